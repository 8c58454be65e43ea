"""DID identity records and issuance.

Key concepts:
- **DIDRecord**: a DID plus the immutable public key that controls it.
- **DIDRegistry**: storage protocol (``find_by_did`` / ``create``).
- **DIDService**: derives ``did:hedera`` identifiers and resolves keys.
"""

from didsign.identity.models import DIDRecord
from didsign.identity.registry import (
    DIDRegistry,
    DIDService,
    InMemoryDIDRegistry,
    did_from_public_key,
)

__all__ = [
    "DIDRecord",
    "DIDRegistry",
    "DIDService",
    "InMemoryDIDRegistry",
    "did_from_public_key",
]
