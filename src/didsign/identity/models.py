"""DID registry records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass
class DIDRecord:
    """A registered DID and the key that controls it.

    Attributes:
        did: The decentralised identifier (``did:hedera:<network>:<suffix>``).
        public_key: Encoded Ed25519 public key as supplied at issuance (hex,
            DER hex, base64 or multibase). Never rotated.
        account_id: Optional ledger account bound to the DID.
        created_at: Issuance time (UTC).
    """

    did: str
    public_key: str
    account_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def suffix(self) -> str:
        return self.did.rsplit(":", 1)[-1]

    def to_dict(self) -> dict[str, Any]:
        return {
            "did": self.did,
            "publicKey": self.public_key,
            "accountId": self.account_id,
            "createdAt": self.created_at.isoformat(),
        }
