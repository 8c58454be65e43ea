"""Signing operations: records, storage, ledger execution and the state machine."""

from didsign.operations.ledger import LedgerExecutor, SimulatedLedgerExecutor
from didsign.operations.models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    CompletionResult,
    Operation,
    OperationStatus,
    OperationType,
)
from didsign.operations.state_machine import OperationStateMachine
from didsign.operations.store import InMemoryOperationStore, OperationStore
from didsign.operations.wallet_response import WalletSignature, parse_wallet_response

__all__ = [
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "CompletionResult",
    "InMemoryOperationStore",
    "LedgerExecutor",
    "Operation",
    "OperationStateMachine",
    "OperationStatus",
    "OperationStore",
    "OperationType",
    "SimulatedLedgerExecutor",
    "WalletSignature",
    "parse_wallet_response",
]
