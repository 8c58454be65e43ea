"""Operation store - storage protocol and in-memory backend.

Writes can carry ``expected_status``: the update only applies if the stored
status still equals it, otherwise :class:`InvalidStateError` is raised and
nothing changes. The state machine relies on this compare-and-set to settle
races between a client completion and a wallet-driven completion.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from didsign.core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from didsign.operations.models import IMMUTABLE_FIELDS, OPERATION_FIELDS, Operation, OperationStatus

# ---------------------------------------------------------------------------
# Storage protocol
# ---------------------------------------------------------------------------


class OperationStore(Protocol):
    """Abstract storage backend for operations."""

    async def create(self, operation: Operation) -> Operation: ...
    async def find_by_id(self, operation_id: str) -> Operation | None: ...

    async def update(
        self,
        operation_id: str,
        fields: dict[str, Any],
        expected_status: OperationStatus | None = None,
    ) -> Operation: ...

    async def list_by_status(self, *statuses: OperationStatus) -> list[Operation]: ...


# ---------------------------------------------------------------------------
# In-memory store (default / tests)
# ---------------------------------------------------------------------------


class InMemoryOperationStore:
    """In-memory :class:`OperationStore`.

    Returns copies so callers never mutate stored rows behind the store's
    back; ``updated_at`` is stamped on every write.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._operations: dict[str, Operation] = {}
        self._lock = asyncio.Lock()
        self._clock = clock or (lambda: datetime.now(UTC))

    async def create(self, operation: Operation) -> Operation:
        async with self._lock:
            if operation.id in self._operations:
                raise ConflictError(f"Operation {operation.id} already exists", existing_id=operation.id)
            self._operations[operation.id] = copy.deepcopy(operation)
            return copy.deepcopy(operation)

    async def find_by_id(self, operation_id: str) -> Operation | None:
        operation = self._operations.get(operation_id)
        return copy.deepcopy(operation) if operation else None

    async def update(
        self,
        operation_id: str,
        fields: dict[str, Any],
        expected_status: OperationStatus | None = None,
    ) -> Operation:
        unknown = set(fields) - OPERATION_FIELDS
        if unknown:
            raise ValidationError(f"Unknown operation fields: {sorted(unknown)}")
        frozen = set(fields) & IMMUTABLE_FIELDS
        if frozen:
            raise ValidationError(f"Immutable operation fields: {sorted(frozen)}")

        async with self._lock:
            operation = self._operations.get(operation_id)
            if operation is None:
                raise NotFoundError("Operation", operation_id)
            if expected_status is not None and operation.status != expected_status:
                raise InvalidStateError(
                    f"Operation {operation_id} is {operation.status.value}, expected {expected_status.value}",
                    operation_id=operation_id,
                    status=operation.status.value,
                )
            for name, value in fields.items():
                setattr(operation, name, value)
            operation.updated_at = self._clock()
            return copy.deepcopy(operation)

    async def list_by_status(self, *statuses: OperationStatus) -> list[Operation]:
        wanted = set(statuses)
        return [copy.deepcopy(op) for op in self._operations.values() if not wanted or op.status in wanted]

    def __len__(self) -> int:
        return len(self._operations)
