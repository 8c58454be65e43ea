"""Core infrastructure: configuration, exceptions and logging."""

from didsign.core.config import CoreSettings, clear_config_cache, get_config
from didsign.core.exceptions import (
    ConfigException,
    ConflictError,
    DIDSignError,
    EncodingError,
    ExpiredError,
    InvalidStateError,
    LedgerExecutionFailedError,
    MismatchError,
    NotFoundError,
    PairingFailedError,
    PairingTimeoutError,
    PrefixMismatchError,
    SignatureInvalidError,
    ValidationError,
)

__all__ = [
    "ConfigException",
    "ConflictError",
    "CoreSettings",
    "DIDSignError",
    "EncodingError",
    "ExpiredError",
    "InvalidStateError",
    "LedgerExecutionFailedError",
    "MismatchError",
    "NotFoundError",
    "PairingFailedError",
    "PairingTimeoutError",
    "PrefixMismatchError",
    "SignatureInvalidError",
    "ValidationError",
    "clear_config_cache",
    "get_config",
]
