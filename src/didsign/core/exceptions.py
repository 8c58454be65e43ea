# SPDX-License-Identifier: MIT
# Copyright (c) 2026 didsign Contributors

"""Exception hierarchy for didsign.

Every guard in the signing flow fails with its own exception type so callers
(and logs) can tell a configuration problem from a forged signature, and a
stale request from a tampered one.
"""

from __future__ import annotations

from typing import Any


class DIDSignError(Exception):
    """Base exception for all didsign errors."""

    code = "error"

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(DIDSignError):
    """Raised when a DID, operation or pairing session does not exist."""

    code = "not_found"

    def __init__(self, resource_type: str, resource_id: str):
        message = f"{resource_type} not found: {resource_id}"
        details = {
            "resource_type": resource_type,
            "resource_id": resource_id,
        }
        super().__init__(message, details)
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidStateError(DIDSignError):
    """Raised when an operation is not in a status that allows the request.

    Also raised by stores when a compare-and-set write observes a status
    other than the expected one.
    """

    code = "invalid_state"

    def __init__(self, message: str, operation_id: str | None = None, status: str | None = None):
        details = {}
        if operation_id:
            details["operation_id"] = operation_id
        if status:
            details["status"] = status
        super().__init__(message, details)
        self.operation_id = operation_id
        self.status = status


class ExpiredError(DIDSignError):
    """Raised when an operation is used after its expiry."""

    code = "expired"

    def __init__(self, operation_id: str):
        super().__init__(f"Operation {operation_id} has expired", {"operation_id": operation_id})
        self.operation_id = operation_id


class MismatchError(DIDSignError):
    """Raised when a submitted DID or signing payload differs from the stored one."""

    code = "mismatch"

    def __init__(self, field: str, message: str | None = None):
        super().__init__(message or f"{field} mismatch", {"field": field})
        self.field = field


class SignatureInvalidError(DIDSignError):
    """Raised for a well-formed signature that does not verify."""

    code = "signature_invalid"


class EncodingError(DIDSignError):
    """Raised for malformed or undecodable keys, signatures or messages."""

    code = "encoding_error"

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            text = str(value)
            details["value"] = text if len(text) <= 64 else text[:64] + "..."
        super().__init__(message, details)
        self.field = field


class PrefixMismatchError(EncodingError):
    """Raised when a signature map's key prefix does not match the stored key.

    This points at a wallet/key configuration problem, not a forgery, so it is
    kept apart from :class:`SignatureInvalidError`.
    """

    code = "prefix_mismatch"


class PairingTimeoutError(DIDSignError):
    """Raised when a wallet does not approve a pairing in time."""

    code = "pairing_timeout"

    def __init__(self, timeout_seconds: float):
        super().__init__(
            f"Session approval timed out after {timeout_seconds:g}s",
            {"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


class PairingFailedError(DIDSignError):
    """Raised on relay or transport failures during pairing or requests."""

    code = "pairing_failed"


class LedgerExecutionFailedError(DIDSignError):
    """Raised when the ledger executor rejects or fails an operation."""

    code = "ledger_execution_failed"


class ConflictError(DIDSignError):
    """Raised when creating a resource that already exists."""

    code = "conflict"

    def __init__(self, message: str, existing_id: str | None = None):
        details = {}
        if existing_id:
            details["existing_id"] = existing_id
        super().__init__(message, details)
        self.existing_id = existing_id


class ValidationError(DIDSignError):
    """Raised for invalid input values (e.g. unknown operation type)."""

    code = "validation_error"

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class ConfigException(DIDSignError):
    """Raised when configuration is missing or invalid."""

    code = "config_error"

    def __init__(self, message: str, missing_vars: list[str] | None = None):
        details = {}
        if missing_vars:
            details["missing_vars"] = missing_vars
        super().__init__(message, details)
        self.missing_vars = missing_vars or []
