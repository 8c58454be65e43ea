"""DID registry - storage protocol, in-memory backend and issuance service.

DIDs are derived from the controlling public key:
``did:hedera:<network>:<first 16 hex chars of sha256(public_key)>``.
Storage is pluggable: the in-memory backend suits tests and single-process
use; persistent backends implement :class:`DIDRegistry`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from didsign.core.exceptions import ConflictError, NotFoundError
from didsign.core.logging import redact
from didsign.crypto.canonical import sha256_hex
from didsign.crypto.encoding import decode_public_key
from didsign.identity.models import DIDRecord

logger = logging.getLogger(__name__)

DID_METHOD = "hedera"
DID_SUFFIX_LENGTH = 16

# ---------------------------------------------------------------------------
# Storage protocol
# ---------------------------------------------------------------------------


class DIDRegistry(Protocol):
    """Abstract storage backend for DID records."""

    async def find_by_did(self, did: str) -> DIDRecord | None: ...
    async def create(self, did: str, public_key: str, account_id: str | None = None) -> DIDRecord: ...


# ---------------------------------------------------------------------------
# In-memory registry (default / tests)
# ---------------------------------------------------------------------------


class InMemoryDIDRegistry:
    """Simple in-memory implementation of :class:`DIDRegistry`."""

    def __init__(self) -> None:
        self._records: dict[str, DIDRecord] = {}
        self._lock = asyncio.Lock()

    async def find_by_did(self, did: str) -> DIDRecord | None:
        return self._records.get(did)

    async def create(self, did: str, public_key: str, account_id: str | None = None) -> DIDRecord:
        async with self._lock:
            if did in self._records:
                raise ConflictError(f"DID {did} already exists", existing_id=did)
            record = DIDRecord(did=did, public_key=public_key, account_id=account_id)
            self._records[did] = record
            return record

    def __len__(self) -> int:
        return len(self._records)


# ---------------------------------------------------------------------------
# Issuance service
# ---------------------------------------------------------------------------


def did_from_public_key(public_key: str, network: str = "testnet") -> str:
    """Derive the DID for an encoded public key.

    The suffix hashes the key *as supplied*, so the same key in two
    encodings yields two DIDs.
    """
    suffix = sha256_hex(public_key)[:DID_SUFFIX_LENGTH]
    return f"did:{DID_METHOD}:{network}:{suffix}"


class DIDService:
    """Issue DIDs and resolve their public keys.

    Typical workflow::

        service = DIDService(InMemoryDIDRegistry())
        record = await service.create_did(public_key_hex)
        key = await service.get_public_key(record.did)
    """

    def __init__(self, registry: DIDRegistry, network: str = "testnet") -> None:
        self.registry = registry
        self.network = network

    async def create_did(self, public_key: str, account_id: str | None = None) -> DIDRecord:
        """Register a DID controlled by ``public_key``.

        Raises:
            EncodingError: If the key is not a decodable Ed25519 public key.
            ConflictError: If the derived DID is already registered.
        """
        decode_public_key(public_key)
        did = did_from_public_key(public_key, self.network)
        record = await self.registry.create(did, public_key, account_id=account_id)
        logger.info("Issued %s for key %s", did, redact(public_key))
        return record

    async def get_record(self, did: str) -> DIDRecord:
        record = await self.registry.find_by_did(did)
        if record is None:
            raise NotFoundError("DID", did)
        return record

    async def get_public_key(self, did: str) -> str | None:
        """Return the stored public key for ``did``, or ``None`` if unknown."""
        record = await self.registry.find_by_did(did)
        return record.public_key if record else None
