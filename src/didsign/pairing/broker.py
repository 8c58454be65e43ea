# SPDX-License-Identifier: MIT
# Copyright (c) 2026 didsign Contributors

"""Pairing broker - negotiates remote wallet sessions and relays requests.

The broker owns the table of approved sessions (keyed by topic) and hides
the relay protocol from the operation state machine:

    broker = PairingBroker.from_settings(get_config())
    pairing = await broker.create_pairing()
    show_qr(pairing.uri)
    session = await pairing.approval()          # bounded by the pairing timeout
    reply = await broker.send_request(session.topic, "hedera_signMessage", [params])
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from didsign.core.config import CoreSettings, get_config
from didsign.core.exceptions import NotFoundError, PairingFailedError, PairingTimeoutError
from didsign.pairing.models import Pairing, PairingSession, extract_account_id
from didsign.pairing.relay import RelayTransport, WebSocketRelayTransport

logger = logging.getLogger(__name__)

GET_PUBLIC_KEY_METHOD = "hedera_getPublicKey"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _preview(value: Any, limit: int = 1000) -> str:
    try:
        text = json.dumps(value, default=str)
    except (TypeError, ValueError):
        text = repr(value)
    return text if len(text) <= limit else text[:limit] + "..."


class PairingBroker:
    """Create pairings, track approved sessions and relay signed method calls."""

    def __init__(
        self,
        transport: RelayTransport,
        settings: CoreSettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.transport = transport
        self.settings = settings or get_config()
        self.clock = clock
        self._sessions: dict[str, PairingSession] = {}

    @classmethod
    def from_settings(cls, settings: CoreSettings | None = None) -> PairingBroker:
        """Build a broker on a WebSocket relay configured from settings."""
        settings = settings or get_config()
        transport = WebSocketRelayTransport(
            settings.relay_url,
            project_id=settings.project_id,
            request_timeout=settings.request_timeout_seconds,
        )
        broker = cls(transport, settings=settings)
        transport.on_session_delete = broker.forget_session
        return broker

    # -- pairing ------------------------------------------------------------

    async def create_pairing(self, operation_id: str | None = None) -> Pairing:
        """Start a pairing and return its URI plus a deferred approval.

        Raises:
            PairingFailedError: If the relay cannot create a pairing or
                returns no URI.
        """
        try:
            uri, pairing_topic, approval = await self.transport.connect(self.settings.required_namespaces)
        except PairingFailedError:
            logger.exception("Failed to create pairing")
            raise
        except Exception as e:
            logger.exception("Failed to create pairing")
            raise PairingFailedError(f"Failed to create pairing: {e}") from e

        if not uri:
            raise PairingFailedError("Relay did not return a pairing URI")

        logger.info(
            "Pairing created%s, topic=%s",
            f" for op {operation_id}" if operation_id else "",
            pairing_topic,
        )

        async def _approval() -> PairingSession:
            return await self._await_approval(approval, operation_id)

        return Pairing(uri=uri, approval=_approval, pairing_topic=pairing_topic)

    async def _await_approval(
        self,
        approval: Awaitable[dict[str, Any]],
        operation_id: str | None,
    ) -> PairingSession:
        timeout = self.settings.pairing_timeout_seconds
        try:
            settle = await asyncio.wait_for(approval, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Session approval timed out after {timeout:g}s (op={operation_id})")
            raise PairingTimeoutError(timeout) from None
        except PairingFailedError:
            raise
        except Exception as e:
            raise PairingFailedError(f"Session approval failed: {e}") from e

        try:
            session = PairingSession.from_settle(settle, self.clock() + self.settings.session_ttl)
        except (KeyError, TypeError, AttributeError) as e:
            raise PairingFailedError(f"Malformed session settlement: {e}") from e

        self._sessions[session.topic] = session
        logger.info(f"Pairing approved, topic={session.topic}, account={session.account_id}")
        return session

    # -- sessions -----------------------------------------------------------

    def get_session(self, topic: str) -> PairingSession | None:
        """Return the active session for ``topic``; expired sessions are dropped."""
        session = self._sessions.get(topic)
        if session is None:
            return None
        if session.is_expired(self.clock()):
            logger.info(f"Session {topic} expired")
            self._sessions.pop(topic, None)
            return None
        return session

    def register_session(self, session: PairingSession) -> None:
        """Track a session restored from elsewhere (e.g. after a restart)."""
        self._sessions[session.topic] = session

    def forget_session(self, topic: str) -> None:
        self._sessions.pop(topic, None)

    async def disconnect(self, topic: str) -> None:
        self.forget_session(topic)
        await self.transport.disconnect(topic)

    @staticmethod
    def extract_account_id(session: PairingSession) -> str:
        return extract_account_id(session)

    # -- requests -----------------------------------------------------------

    async def send_request(self, topic: str, method: str, params: list[Any] | Any) -> Any:
        """Relay ``method`` to the wallet behind ``topic``.

        A single-element params list is unwrapped before sending. Relay errors
        propagate unchanged.

        Raises:
            NotFoundError: If there is no active session for ``topic``.
        """
        session = self.get_session(topic)
        if session is None:
            raise NotFoundError("PairingSession", topic)

        chain_id = session.chain_id(self.settings.chain_id)
        payload = params[0] if isinstance(params, list) and len(params) == 1 else params
        logger.debug(f"Relaying {method} on topic {topic} ({chain_id}): {_preview(payload)}")

        try:
            result = await self.transport.request(topic, chain_id, method, payload)
        except Exception:
            logger.error(f"Wallet request {method} failed on topic {topic}")
            raise

        logger.debug(f"Wallet request {method} succeeded: {_preview(result)}")
        return result

    async def request_message_signature(self, topic: str, account_id: str, message: str) -> Any:
        """Ask the wallet to sign a plain UTF-8 ``message``."""
        return await self.send_request(
            topic,
            self.settings.signing_method,
            [{"signerAccountId": account_id, "message": message, "encoding": "utf8"}],
        )

    async def get_public_key(self, topic: str, account_id: str) -> str:
        """Fetch the full public key of ``account_id`` from the wallet.

        Raises:
            PairingFailedError: If the wallet answers with anything but a string.
        """
        result = await self.send_request(topic, GET_PUBLIC_KEY_METHOD, [{"accountId": account_id}])
        if not isinstance(result, str) or not result:
            raise PairingFailedError("Invalid public key response from wallet")
        return result
