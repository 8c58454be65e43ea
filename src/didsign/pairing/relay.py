# SPDX-License-Identifier: MIT
# Copyright (c) 2026 didsign Contributors

"""Relay transport for wallet pairing - JSON-RPC 2.0 over a WebSocket.

Message flow (all frames are JSON text):

    -> {"id": 1, "method": "pairing_create", "params": {"requiredNamespaces": ...}}
    <- {"id": 1, "result": {"uri": "wc:...", "topic": "<pairing topic>"}}
    <- {"method": "session_settle", "params": {"pairingTopic": ..., "topic": ...,
                                               "namespaces": ..., "expiry": ...}}
    -> {"id": 2, "method": "session_request",
        "params": {"topic": ..., "chainId": ..., "request": {"method": ..., "params": ...}}}
    <- {"id": 2, "result": ...}            or {"id": 2, "error": {"code": ..., "message": ...}}

A wallet that declines sends ``session_reject`` for the pairing topic; a
wallet that disconnects sends ``session_delete`` for the session topic.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import aiohttp
from aiohttp import WSMsgType

from didsign.core.exceptions import ConfigException, PairingFailedError

logger = logging.getLogger(__name__)

DEFAULT_METADATA = {
    "name": "DID Signing Service",
    "description": "DID operations over remote wallet signing",
    "url": "http://localhost:3000",
    "icons": [],
}

# Settlements kept for pairing topics nobody has registered yet; oldest dropped first
MAX_EARLY_SETTLES = 64


class RelayError(PairingFailedError):
    """Raised for relay-level failures (transport errors, error replies, timeouts)."""

    def __init__(self, message: str, code: int | None = None):
        details = {"relay_code": code} if code is not None else {}
        super().__init__(message, details)
        self.relay_code = code


class RelayTransport(Protocol):
    """Connect/request/disconnect primitives of the wallet session protocol."""

    async def connect(self, required_namespaces: dict[str, Any]) -> tuple[str, str, Awaitable[dict[str, Any]]]:
        """Open a pairing.

        Returns:
            Tuple of (uri, pairing_topic, approval) where ``approval``
            resolves to the wallet's settle payload.
        """
        ...

    async def request(self, topic: str, chain_id: str, method: str, params: Any) -> Any: ...
    async def disconnect(self, topic: str) -> None: ...
    async def close(self) -> None: ...


class WebSocketRelayTransport:
    """aiohttp WebSocket client speaking the relay JSON-RPC protocol.

    One connection is opened lazily and shared by all pairings; responses
    are matched to requests by id on a single reader task.
    """

    def __init__(
        self,
        relay_url: str,
        project_id: str = "",
        metadata: dict[str, Any] | None = None,
        request_timeout: float = 300.0,
        heartbeat: float = 30.0,
        on_session_delete: Callable[[str], None] | None = None,
    ):
        if not relay_url:
            raise ConfigException("Relay URL is required", missing_vars=["DIDSIGN_RELAY_URL"])
        self.relay_url = relay_url
        self.project_id = project_id
        self.metadata = metadata or DEFAULT_METADATA
        self.request_timeout = request_timeout
        self.heartbeat = heartbeat
        self.on_session_delete = on_session_delete

        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task | None = None
        self._connect_lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._approvals: dict[str, asyncio.Future] = {}
        # Settlements that arrive before connect() registers its future
        self._early_settles: dict[str, dict[str, Any] | RelayError] = {}

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    # -- connection ---------------------------------------------------------

    async def _ensure_connected(self) -> aiohttp.ClientWebSocketResponse:
        async with self._connect_lock:
            if self._ws is not None and not self._ws.closed:
                return self._ws

            if self._session is not None and not self._session.closed:
                await self._session.close()

            params = {"projectId": self.project_id} if self.project_id else None
            self._session = aiohttp.ClientSession()
            try:
                self._ws = await self._session.ws_connect(
                    self.relay_url,
                    params=params,
                    heartbeat=self.heartbeat,
                )
            except (aiohttp.ClientError, OSError) as e:
                await self._session.close()
                self._session = None
                raise RelayError(f"Failed to connect to relay {self.relay_url}: {e}") from e

            self._reader = asyncio.create_task(self._read_loop(self._ws), name="relay-reader")
            logger.info("Connected to relay %s", self.relay_url)
            return self._ws

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        self._dispatch(json.loads(msg.data))
                    except (json.JSONDecodeError, KeyError, TypeError) as e:
                        logger.warning(f"Dropping malformed relay frame: {e}")
                elif msg.type in (WSMsgType.ERROR, WSMsgType.CLOSE, WSMsgType.CLOSED):
                    break
        finally:
            self._fail_all(RelayError("Relay connection closed"))

    def _dispatch(self, message: dict[str, Any]) -> None:
        if "id" in message and ("result" in message or "error" in message):
            future = self._pending.pop(message["id"], None)
            if future is None or future.done():
                return
            error = message.get("error")
            if error:
                future.set_exception(
                    RelayError(error.get("message", "Relay request failed"), code=error.get("code"))
                )
            else:
                future.set_result(message.get("result"))
            return

        method = message.get("method")
        params = message.get("params") or {}
        if method == "session_settle":
            self._resolve_approval(params["pairingTopic"], params)
        elif method == "session_reject":
            reason = params.get("reason") or "Session proposal rejected"
            self._resolve_approval(params["pairingTopic"], RelayError(str(reason)))
        elif method == "session_delete":
            topic = params.get("topic")
            logger.info(f"Session deleted by wallet: {topic}")
            if topic and self.on_session_delete:
                self.on_session_delete(topic)
        else:
            logger.debug(f"Ignoring relay notification {method}")

    def _resolve_approval(self, pairing_topic: str, outcome: dict[str, Any] | RelayError) -> None:
        future = self._approvals.pop(pairing_topic, None)
        if future is None:
            self._buffer_early_settle(pairing_topic, outcome)
            return
        if future.done():
            return
        if isinstance(outcome, RelayError):
            future.set_exception(outcome)
        else:
            future.set_result(outcome)

    def _buffer_early_settle(self, pairing_topic: str, outcome: dict[str, Any] | RelayError) -> None:
        self._early_settles.pop(pairing_topic, None)
        self._early_settles[pairing_topic] = outcome
        while len(self._early_settles) > MAX_EARLY_SETTLES:
            dropped = next(iter(self._early_settles))
            del self._early_settles[dropped]
            logger.debug(f"Dropping unclaimed settlement for pairing {dropped}")

    def _forget_approval(self, pairing_topic: str, future: asyncio.Future) -> None:
        if self._approvals.get(pairing_topic) is future:
            del self._approvals[pairing_topic]

    def _fail_all(self, error: RelayError) -> None:
        for future in list(self._pending.values()) + list(self._approvals.values()):
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
        self._approvals.clear()

    async def _call(self, method: str, params: dict[str, Any], timeout: float | None = None) -> Any:
        ws = await self._ensure_connected()
        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await ws.send_json({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
        except (aiohttp.ClientError, ConnectionError) as e:
            self._pending.pop(request_id, None)
            raise RelayError(f"Failed to send {method}: {e}") from e

        try:
            return await asyncio.wait_for(future, timeout or self.request_timeout)
        except asyncio.TimeoutError:
            self._pending.pop(request_id, None)
            raise RelayError(f"Relay request {method} timed out") from None

    # -- RelayTransport -----------------------------------------------------

    async def connect(self, required_namespaces: dict[str, Any]) -> tuple[str, str, Awaitable[dict[str, Any]]]:
        result = await self._call(
            "pairing_create",
            {"requiredNamespaces": required_namespaces, "metadata": self.metadata},
        )
        if not isinstance(result, dict):
            raise RelayError("Malformed pairing_create response")
        uri = result.get("uri") or ""
        pairing_topic = result.get("topic") or ""

        future = asyncio.get_running_loop().create_future()
        early = self._early_settles.pop(pairing_topic, None)
        if isinstance(early, RelayError):
            future.set_exception(early)
        elif early is not None:
            future.set_result(early)
        else:
            self._approvals[pairing_topic] = future
            # Timed-out or abandoned approvals are cancelled by the waiter
            future.add_done_callback(lambda f: self._forget_approval(pairing_topic, f))
        return uri, pairing_topic, future

    async def request(self, topic: str, chain_id: str, method: str, params: Any) -> Any:
        return await self._call(
            "session_request",
            {"topic": topic, "chainId": chain_id, "request": {"method": method, "params": params}},
        )

    async def disconnect(self, topic: str) -> None:
        await self._call("session_delete", {"topic": topic, "reason": "USER_DISCONNECTED"})

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._fail_all(RelayError("Relay transport closed"))
