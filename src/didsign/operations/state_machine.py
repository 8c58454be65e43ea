# SPDX-License-Identifier: MIT
# Copyright (c) 2026 didsign Contributors

"""Operation state machine - lifecycle of one wallet-authorized DID operation.

States::

    awaiting_signature ──► signed ──► submitting ──► completed
            │                │             │
            ├──► expired ◄───┤             │
            └──► failed ◄────┴─────────────┘

A signature reaches an operation by one of two paths:

- **client-submitted**: :meth:`OperationStateMachine.complete_by_submitted_signature`
- **wallet-driven**: :meth:`OperationStateMachine.attach_pairing` spawns a
  background task that waits for the wallet to approve the pairing, records
  the session, then calls :meth:`OperationStateMachine.push_signing_request`.

Every transition is a compare-and-set on the status the caller last read, so
when both paths race, the first writer wins and the other gets
:class:`InvalidStateError` without touching the record. Failures are
persisted (``failed``/``expired``) before the error reaches the caller;
background failures are persisted even when nobody is waiting.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Mapping
from datetime import UTC, datetime
from typing import Any

from didsign.core.config import CoreSettings, get_config
from didsign.core.exceptions import (
    DIDSignError,
    EncodingError,
    ExpiredError,
    InvalidStateError,
    LedgerExecutionFailedError,
    MismatchError,
    NotFoundError,
    PairingFailedError,
    PairingTimeoutError,
    SignatureInvalidError,
    ValidationError,
)
from didsign.core.logging import operation_context, redact
from didsign.crypto.canonical import build_signing_payload, canonicalize
from didsign.crypto.verifier import SignatureVerifier, VerificationResult
from didsign.identity.registry import DIDRegistry
from didsign.operations.ledger import LedgerExecutor, SimulatedLedgerExecutor
from didsign.operations.models import (
    CompletionResult,
    Operation,
    OperationStatus,
    OperationType,
    can_transition,
)
from didsign.operations.store import OperationStore
from didsign.operations.wallet_response import parse_wallet_response
from didsign.pairing.broker import PairingBroker
from didsign.pairing.models import Pairing, PairingSession

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _describe(error: BaseException) -> str:
    if isinstance(error, DIDSignError):
        return f"{error.code}: {error.message}"
    return f"error: {error}"


def _signature_text(signature: Any) -> str:
    if isinstance(signature, (bytes, bytearray)):
        return bytes(signature).hex()
    if isinstance(signature, Mapping):
        return canonicalize(signature)
    return str(signature)


class OperationStateMachine:
    """Coordinates payload derivation, pairing, verification and execution.

    All collaborators are injected; nothing is looked up from globals except
    the settings default.
    """

    def __init__(
        self,
        store: OperationStore,
        registry: DIDRegistry,
        broker: PairingBroker,
        verifier: SignatureVerifier | None = None,
        ledger: LedgerExecutor | None = None,
        settings: CoreSettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.settings = settings or get_config()
        self.store = store
        self.registry = registry
        self.broker = broker
        self.verifier = verifier or SignatureVerifier(self.settings.signed_message_prefix)
        self.ledger = ledger or SimulatedLedgerExecutor()
        self.clock = clock
        self._tasks: dict[str, asyncio.Task] = {}

    # -- lookups ------------------------------------------------------------

    async def get_operation(self, operation_id: str) -> Operation:
        operation = await self.store.find_by_id(operation_id)
        if operation is None:
            raise NotFoundError("Operation", operation_id)
        return operation

    async def get_operation_status(self, operation_id: str) -> dict[str, Any]:
        return (await self.get_operation(operation_id)).status_view()

    async def _public_key_for(self, did: str) -> str:
        record = await self.registry.find_by_did(did)
        if record is None or not record.public_key:
            raise NotFoundError("PublicKey", did)
        return record.public_key

    # -- transitions --------------------------------------------------------

    async def _transition(self, operation: Operation, target: OperationStatus, **fields: Any) -> Operation:
        current = operation.status
        if not can_transition(current, target):
            raise InvalidStateError(
                f"Operation {operation.id} cannot move from {current.value} to {target.value}",
                operation_id=operation.id,
                status=current.value,
            )
        updated = await self.store.update(operation.id, {"status": target, **fields}, expected_status=current)
        logger.debug(f"Operation {operation.id}: {current.value} -> {target.value}")
        return updated

    async def _fail(
        self,
        operation_id: str,
        error: BaseException,
        status: OperationStatus = OperationStatus.FAILED,
        expected: OperationStatus | None = None,
        **fields: Any,
    ) -> Operation | None:
        """Persist a terminal failure unless the operation is already final.

        With ``expected``, the failure is only recorded while the operation is
        still in that status. Returns the updated operation, or ``None`` if
        another writer got there first.
        """
        operation = await self.store.find_by_id(operation_id)
        if operation is None:
            logger.error(f"Cannot record failure for missing operation {operation_id}: {error}")
            return None
        if operation.is_terminal:
            logger.info(f"Operation {operation_id} already {operation.status.value}; not recording {_describe(error)}")
            return None
        if expected is not None and operation.status != expected:
            logger.info(f"Operation {operation_id} moved to {operation.status.value}; failure {_describe(error)} discarded")
            return None
        if not can_transition(operation.status, status):
            status = OperationStatus.FAILED
        try:
            return await self._transition(operation, status, error=_describe(error), **fields)
        except InvalidStateError:
            logger.info(f"Operation {operation_id} changed concurrently; failure {_describe(error)} discarded")
            return None

    async def _expire(self, operation: Operation) -> ExpiredError:
        error = ExpiredError(operation.id)
        await self._fail(operation.id, error, status=OperationStatus.EXPIRED)
        logger.info(f"Operation {operation.id} expired at {operation.expires_at.isoformat()}")
        return error

    # -- creation -----------------------------------------------------------

    async def create(
        self,
        did: str,
        operation_type: str | OperationType,
        operation_data: Mapping[str, Any] | None = None,
    ) -> tuple[Operation, str]:
        """Persist a new operation awaiting its signature.

        Returns:
            Tuple of (operation, canonical_message).

        Raises:
            ValidationError: Unknown operation type or non-object data.
            NotFoundError: The DID is not registered.
        """
        op_type = OperationType.parse(operation_type)
        if operation_data is None:
            operation_data = {}
        if not isinstance(operation_data, Mapping):
            raise ValidationError("operationData must be an object", field="operationData")

        if await self.registry.find_by_did(did) is None:
            raise NotFoundError("DID", did)

        now = self.clock()
        message, payload = build_signing_payload(
            did,
            op_type.value,
            dict(operation_data),
            mode=self.settings.payload_mode,
            salt=int(now.timestamp() * 1000),
        )
        operation = Operation(
            did=did,
            operation_type=op_type,
            operation_data=dict(operation_data),
            signing_payload=payload,
            expires_at=now + self.settings.operation_ttl,
            created_at=now,
            updated_at=now,
        )
        stored = await self.store.create(operation)
        logger.info(f"Created {op_type.value} operation {stored.id} for {did}")
        return stored, message

    async def initiate(
        self,
        did: str,
        operation_type: str | OperationType,
        operation_data: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Create an operation and open a wallet pairing for it.

        Raises:
            PairingFailedError: The pairing could not be created; the
                operation is left ``failed``.
        """
        operation, message = await self.create(did, operation_type, operation_data)
        uri = await self.attach_pairing(operation.id)
        return {
            "operationId": operation.id,
            "signingPayload": operation.signing_payload,
            "message": message,
            "expiresAt": operation.expires_at.isoformat(),
            "pairingUri": uri,
        }

    # -- pairing ------------------------------------------------------------

    async def attach_pairing(self, operation_id: str) -> str:
        """Open a pairing for the operation and watch for approval in the background.

        Returns:
            The pairing URI to show the wallet holder.
        """
        with operation_context(operation_id):
            operation = await self.get_operation(operation_id)
            if operation.status != OperationStatus.AWAITING_SIGNATURE:
                raise InvalidStateError(
                    f"Operation {operation_id} is not awaiting signature",
                    operation_id=operation_id,
                    status=operation.status.value,
                )

            try:
                pairing = await self.broker.create_pairing(operation_id)
            except PairingFailedError as e:
                await self._fail(operation_id, e)
                raise

            await self.store.update(operation_id, {"pairing_uri": pairing.uri})
            self._spawn(operation_id, self._watch_approval(operation_id, pairing))
            logger.info(f"Pairing attached to operation {operation_id}")
            return pairing.uri

    def _spawn(self, operation_id: str, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        previous = self._tasks.get(operation_id)
        if previous is not None and not previous.done():
            previous.cancel()

        task = asyncio.create_task(coro, name=f"pairing-approval:{operation_id}")
        self._tasks[operation_id] = task

        def _forget(done: asyncio.Task) -> None:
            if self._tasks.get(operation_id) is done:
                del self._tasks[operation_id]

        task.add_done_callback(_forget)
        return task

    async def _watch_approval(self, operation_id: str, pairing: Pairing) -> None:
        with operation_context(operation_id):
            timeout = self.settings.pairing_timeout_seconds
            try:
                session = await asyncio.wait_for(pairing.approval(), timeout)
            except asyncio.CancelledError:
                logger.info(f"Approval watch for operation {operation_id} cancelled")
                raise
            except asyncio.TimeoutError:
                await self._background_failure(operation_id, PairingTimeoutError(timeout))
                return
            except DIDSignError as e:
                await self._background_failure(operation_id, e)
                return
            except Exception as e:
                logger.exception(f"Unexpected error awaiting approval for {operation_id}")
                await self._background_failure(operation_id, PairingFailedError(f"Session approval failed: {e}"))
                return

            if not await self._apply_session(operation_id, session):
                return

            if not self.settings.auto_request_signature:
                return
            if self.settings.auto_request_delay_seconds:
                await asyncio.sleep(self.settings.auto_request_delay_seconds)

            try:
                await self.push_signing_request(operation_id)
            except InvalidStateError as e:
                logger.info(f"Automatic signature request for {operation_id} skipped: {e.message}")
            except DIDSignError as e:
                logger.error(f"Automatic signature flow for {operation_id} failed: {_describe(e)}")
            except Exception:
                logger.exception(f"Automatic signature flow for {operation_id} failed")

    async def _background_failure(self, operation_id: str, error: DIDSignError) -> None:
        logger.error(f"Pairing for operation {operation_id} failed: {_describe(error)}")
        await self._fail(operation_id, error, pairing_topic=None)

    async def _apply_session(self, operation_id: str, session: PairingSession) -> bool:
        """Record an approved session; ``False`` if the operation moved on."""
        operation = await self.store.find_by_id(operation_id)
        if operation is None:
            logger.error(f"Approved session {session.topic} for missing operation {operation_id}")
            return False
        if operation.status != OperationStatus.AWAITING_SIGNATURE:
            logger.info(
                f"Discarding session {session.topic}: operation {operation_id} is {operation.status.value}"
            )
            return False
        if operation.is_expired(self.clock()):
            await self._expire(operation)
            return False

        fields = {
            "pairing_topic": session.topic,
            "pairing_expiry": session.expiry or self.clock() + self.settings.session_ttl,
            "account_id": self.broker.extract_account_id(session),
        }
        try:
            await self.store.update(operation_id, fields, expected_status=OperationStatus.AWAITING_SIGNATURE)
        except InvalidStateError:
            logger.info(f"Operation {operation_id} changed before session {session.topic} was recorded")
            return False
        logger.info(f"Session {session.topic} approved for operation {operation_id}")
        return True

    def background_task(self, operation_id: str) -> asyncio.Task | None:
        return self._tasks.get(operation_id)

    def cancel_pairing(self, operation_id: str) -> bool:
        """Stop watching for approval; the operation record is left as is."""
        task = self._tasks.get(operation_id)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def aclose(self) -> None:
        """Cancel every background task and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    # -- verification and execution -----------------------------------------

    async def _verify_or_fail(
        self,
        operation: Operation,
        public_key: str,
        signature: Any,
    ) -> VerificationResult:
        try:
            return self.verifier.verify(public_key, operation.signing_payload, signature)
        except EncodingError as e:
            # Undecodable key/signature or a prefix mismatch: a wallet or
            # registry configuration problem rather than a forgery.
            logger.error(
                f"Signature for operation {operation.id} could not be decoded "
                f"(key {redact(public_key)}): {_describe(e)}",
                extra={"extra_data": {"error_code": e.code, "public_key": public_key, "signature": signature}},
            )
            await self._fail(operation.id, e, expected=operation.status, signature=None)
            raise SignatureInvalidError(
                f"Signature could not be verified: {e.message}",
                {"cause": e.code, **e.details},
            ) from e
        except SignatureInvalidError as e:
            logger.warning(
                f"Signature for operation {operation.id} did not verify against key {redact(public_key)}",
                extra={"extra_data": {"encodings": e.details.get("encodings"), "public_key": public_key}},
            )
            await self._fail(operation.id, e, expected=operation.status, signature=None)
            raise

    async def _finalize(
        self,
        operation: Operation,
        signature: Any,
        signer_public_key: str | None,
        verification: VerificationResult,
    ) -> CompletionResult:
        signed = await self._transition(
            operation,
            OperationStatus.SIGNED,
            signature=_signature_text(signature),
            signer_public_key=signer_public_key,
            error=None,
        )
        logger.info(f"Operation {operation.id} signed ({verification.encoding} encoding)")

        submitting = await self._transition(signed, OperationStatus.SUBMITTING)
        try:
            result = await self.ledger.execute(operation.operation_type, operation.operation_data)
        except Exception as e:
            error = e if isinstance(e, LedgerExecutionFailedError) else LedgerExecutionFailedError(
                f"Ledger execution failed: {e}"
            )
            logger.error(f"Ledger execution for operation {operation.id} failed: {_describe(error)}")
            await self._fail(operation.id, error)
            if error is e:
                raise
            raise error from e

        await self._transition(submitting, OperationStatus.COMPLETED, result=result)
        logger.info(f"Operation {operation.id} completed")
        return CompletionResult(
            success=True,
            operation_id=operation.id,
            status=OperationStatus.COMPLETED,
            result=result,
        )

    # -- client-submitted path ----------------------------------------------

    async def complete_by_submitted_signature(
        self,
        operation_id: str,
        did: str,
        signing_payload: str,
        signature: Any,
    ) -> CompletionResult:
        """Complete an operation with a signature posted by the client.

        Guards run in order: exists, awaiting signature, not expired, DID
        matches, payload matches byte-for-byte, DID key known, signature
        verifies.

        Raises:
            NotFoundError, InvalidStateError, ExpiredError, MismatchError,
            SignatureInvalidError, LedgerExecutionFailedError
        """
        with operation_context(operation_id, did=did):
            operation = await self.get_operation(operation_id)
            if operation.status != OperationStatus.AWAITING_SIGNATURE:
                raise InvalidStateError(
                    f"Operation {operation_id} is not awaiting signature",
                    operation_id=operation_id,
                    status=operation.status.value,
                )
            if operation.is_expired(self.clock()):
                raise await self._expire(operation)
            if operation.did != did:
                raise MismatchError("did", "DID mismatch")
            if operation.signing_payload != signing_payload:
                raise MismatchError("signingPayload", "Signing payload mismatch")

            public_key = await self._public_key_for(did)
            verification = await self._verify_or_fail(operation, public_key, signature)
            return await self._finalize(operation, signature, None, verification)

    # -- wallet-driven path -------------------------------------------------

    async def push_signing_request(self, operation_id: str, method: str | None = None) -> CompletionResult:
        """Ask the paired wallet to sign the stored payload and complete the operation.

        Raises:
            NotFoundError: Unknown operation, session or DID key.
            InvalidStateError: No pairing topic, or the operation is final or
                already being completed.
            ExpiredError: The operation expired (it is marked ``expired``).
            SignatureInvalidError: The wallet's signature did not verify.
        """
        with operation_context(operation_id):
            operation = await self.get_operation(operation_id)
            if not operation.pairing_topic:
                raise InvalidStateError(
                    f"No pairing topic for operation {operation_id}",
                    operation_id=operation_id,
                    status=operation.status.value,
                )
            if operation.is_terminal:
                raise InvalidStateError(
                    f"Operation {operation_id} is already {operation.status.value}",
                    operation_id=operation_id,
                    status=operation.status.value,
                )
            if operation.is_expired(self.clock()):
                raise await self._expire(operation)

            operation = await self._transition(operation, OperationStatus.AWAITING_SIGNATURE)

            params: dict[str, Any] = {
                "message": operation.signing_payload,
                "operationId": operation.id,
                "encoding": "utf8",
            }
            if operation.account_id:
                params["signerAccountId"] = operation.account_id

            try:
                response = await self.broker.send_request(
                    operation.pairing_topic,
                    method or self.settings.signing_method,
                    [params],
                )
                parsed = parse_wallet_response(response)
                if parsed is None:
                    raise EncodingError("Wallet response carried no signature", field="response")

                if parsed.public_key and self.settings.allow_session_keys:
                    verify_key = parsed.public_key
                else:
                    verify_key = await self._public_key_for(operation.did)
            except DIDSignError as e:
                logger.error(f"Signing request for operation {operation_id} failed: {_describe(e)}")
                await self._fail(operation.id, e, expected=operation.status, signature=None)
                raise
            except Exception as e:
                logger.exception(f"Signing request for operation {operation_id} failed")
                await self._fail(
                    operation_id,
                    PairingFailedError(str(e)),
                    expected=OperationStatus.AWAITING_SIGNATURE,
                    signature=None,
                )
                raise

            verification = await self._verify_or_fail(operation, verify_key, parsed.signature)
            signer = parsed.public_key if verify_key == parsed.public_key else None
            return await self._finalize(operation, parsed.signature, signer, verification)

    # -- maintenance --------------------------------------------------------

    async def expire_overdue(self) -> list[str]:
        """Move every pending operation past its expiry to ``expired``.

        Safe to run periodically; a restarted process uses it to settle
        operations whose in-memory watchers were lost.
        """
        now = self.clock()
        expired: list[str] = []
        pending = await self.store.list_by_status(
            OperationStatus.AWAITING_SIGNATURE, OperationStatus.SIGNED
        )
        for operation in pending:
            if not operation.is_expired(now):
                continue
            try:
                await self._transition(operation, OperationStatus.EXPIRED, error=_describe(ExpiredError(operation.id)))
            except InvalidStateError:
                continue
            self.cancel_pairing(operation.id)
            expired.append(operation.id)
        if expired:
            logger.info(f"Expired {len(expired)} overdue operation(s)")
        return expired
