"""Ledger execution of authorized DID operations.

Transaction construction is network-specific and lives behind
:class:`LedgerExecutor`. :class:`SimulatedLedgerExecutor` stands in for it in
tests and local runs.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from didsign.operations.models import OperationType

logger = logging.getLogger(__name__)


class LedgerExecutor(Protocol):
    """Executes an authorized operation on the ledger."""

    async def execute(self, operation_type: OperationType, operation_data: dict[str, Any]) -> dict[str, Any]: ...


_MESSAGES = {
    OperationType.CREATE: "DID created on Hedera network",
    OperationType.UPDATE: "DID document updated on Hedera network",
    OperationType.ADD_KEY: "New verification method added to DID document",
    OperationType.REVOKE_KEY: "Verification method revoked from DID document",
}


class SimulatedLedgerExecutor:
    """Acknowledges operations without touching a network."""

    def __init__(self) -> None:
        self.executed: list[tuple[OperationType, dict[str, Any]]] = []

    async def execute(self, operation_type: OperationType, operation_data: dict[str, Any]) -> dict[str, Any]:
        self.executed.append((operation_type, operation_data))
        message = _MESSAGES.get(operation_type, "Operation executed successfully")
        logger.info(f"Simulated ledger execution of {operation_type.value}")
        return {"message": message}
