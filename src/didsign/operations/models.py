"""Operation records and their lifecycle enums."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from typing import Any

from didsign.core.exceptions import ValidationError

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class OperationType(enum.StrEnum):
    """DID operations a holder can authorize."""

    CREATE = "create"
    UPDATE = "update"
    ADD_KEY = "add_key"
    REVOKE_KEY = "revoke_key"
    ADD_SERVICE = "add_service"
    REVOKE_SERVICE = "revoke_service"

    @classmethod
    def parse(cls, value: str | OperationType) -> OperationType:
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(
                f"Unsupported operation type: {value}",
                field="operationType",
                value=value,
            ) from None


class OperationStatus(enum.StrEnum):
    """Lifecycle status of a signing operation."""

    AWAITING_SIGNATURE = "awaiting_signature"
    SIGNED = "signed"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    EXPIRED = "expired"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {OperationStatus.COMPLETED, OperationStatus.EXPIRED, OperationStatus.FAILED}
)

ALLOWED_TRANSITIONS: dict[OperationStatus, frozenset[OperationStatus]] = {
    OperationStatus.AWAITING_SIGNATURE: frozenset(
        {
            OperationStatus.AWAITING_SIGNATURE,
            OperationStatus.SIGNED,
            OperationStatus.EXPIRED,
            OperationStatus.FAILED,
        }
    ),
    OperationStatus.SIGNED: frozenset(
        {OperationStatus.SUBMITTING, OperationStatus.EXPIRED, OperationStatus.FAILED}
    ),
    OperationStatus.SUBMITTING: frozenset({OperationStatus.COMPLETED, OperationStatus.FAILED}),
    OperationStatus.COMPLETED: frozenset(),
    OperationStatus.EXPIRED: frozenset(),
    OperationStatus.FAILED: frozenset(),
}


def can_transition(current: OperationStatus, target: OperationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


# ---------------------------------------------------------------------------
# Operation
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class Operation:
    """One DID operation awaiting (or past) its authorizing signature.

    ``signing_payload`` is fixed at creation and compared byte-for-byte when
    a signature is presented; it is never re-derived.
    """

    did: str
    operation_type: OperationType
    signing_payload: str
    expires_at: datetime
    operation_data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: OperationStatus = OperationStatus.AWAITING_SIGNATURE
    signature: str | None = None
    signer_public_key: str | None = None
    pairing_uri: str | None = None
    pairing_topic: str | None = None
    pairing_expiry: datetime | None = None
    account_id: str | None = None
    error: str | None = None
    result: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if self.expires_at <= self.created_at:
            raise ValidationError("expires_at must be later than created_at", field="expires_at")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or _utcnow()) > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "did": self.did,
            "operationType": self.operation_type.value,
            "operationData": self.operation_data,
            "signingPayload": self.signing_payload,
            "status": self.status.value,
            "signature": self.signature,
            "signerPublicKey": self.signer_public_key,
            "pairingUri": self.pairing_uri,
            "pairingTopic": self.pairing_topic,
            "pairingExpiry": _iso(self.pairing_expiry),
            "accountId": self.account_id,
            "error": self.error,
            "result": self.result,
            "expiresAt": _iso(self.expires_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def status_view(self) -> dict[str, Any]:
        """Projection served to clients polling for progress."""
        return {
            "id": self.id,
            "did": self.did,
            "operationType": self.operation_type.value,
            "status": self.status.value,
            "expiresAt": _iso(self.expires_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "pairingUri": self.pairing_uri,
            "pairingTopic": self.pairing_topic,
            "signerPublicKey": self.signer_public_key,
            "error": self.error,
        }


OPERATION_FIELDS = frozenset(f.name for f in fields(Operation))
IMMUTABLE_FIELDS = frozenset({"id", "did", "operation_type", "operation_data", "signing_payload", "created_at"})


@dataclass
class CompletionResult:
    """What a successful completion returns to the caller."""

    success: bool
    operation_id: str
    status: OperationStatus
    result: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "operationId": self.operation_id,
            "status": self.status.value,
            "result": self.result,
        }
