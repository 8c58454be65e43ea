"""Global test fixtures for the didsign test suite."""

from __future__ import annotations

import asyncio
import base64
import inspect
import os
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from didsign.core.config import CoreSettings, clear_config_cache
from didsign.identity.registry import InMemoryDIDRegistry
from didsign.operations.store import InMemoryOperationStore
from didsign.pairing.relay import RelayError

# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all DIDSIGN_ environment variables and the cached config."""
    for key in list(os.environ.keys()):
        if key.startswith("DIDSIGN_"):
            monkeypatch.delenv(key, raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def settings(clean_env) -> CoreSettings:
    """Settings with timeouts short enough for tests."""
    return CoreSettings(
        pairing_timeout_seconds=0.2,
        request_timeout_seconds=1.0,
        auto_request_delay_seconds=0,
    )


# ============================================================================
# Clock
# ============================================================================


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Keys
# ============================================================================


class Signer:
    """An Ed25519 keypair with helpers for the encodings wallets use."""

    def __init__(self, private_key: Ed25519PrivateKey | None = None):
        self.private_key = private_key or Ed25519PrivateKey.generate()

    @property
    def raw_public_key(self) -> bytes:
        return self.private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)

    @property
    def public_key_hex(self) -> str:
        return self.raw_public_key.hex()

    @property
    def public_key_der_hex(self) -> str:
        return self.private_key.public_key().public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo).hex()

    @property
    def public_key_base64(self) -> str:
        return base64.b64encode(self.raw_public_key).decode()

    def sign(self, message: str | bytes) -> bytes:
        data = message.encode("utf-8") if isinstance(message, str) else message
        return self.private_key.sign(data)

    def sign_hex(self, message: str | bytes) -> str:
        return self.sign(message).hex()


@pytest.fixture
def signer() -> Signer:
    return Signer()


@pytest.fixture
def other_signer() -> Signer:
    return Signer()


# ============================================================================
# Stores
# ============================================================================


@pytest.fixture
def registry() -> InMemoryDIDRegistry:
    return InMemoryDIDRegistry()


@pytest.fixture
def store() -> InMemoryOperationStore:
    return InMemoryOperationStore()


# ============================================================================
# Relay
# ============================================================================

PAIRING_URI = "wc:3f1c0a@2?relay-protocol=irn&symKey=9a7e"
PAIRING_TOPIC = "3f1c0a"
SESSION_TOPIC = "b7d4e2"


class FakeRelayTransport:
    """In-process :class:`RelayTransport` driven by the test.

    ``responder(method, params)`` answers wallet requests; it may be a plain
    function or a coroutine function.
    """

    def __init__(self) -> None:
        self.uri = PAIRING_URI
        self.pairing_topic = PAIRING_TOPIC
        self.connect_error: Exception | None = None
        self.required_namespaces: dict[str, Any] | None = None
        self.approval: asyncio.Future | None = None
        self.requests: list[tuple[str, str, str, Any]] = []
        self.responder: Callable[[str, Any], Any] | None = None
        self.disconnected: list[str] = []
        self.closed = False

    async def connect(self, required_namespaces: dict[str, Any]):
        if self.connect_error is not None:
            raise self.connect_error
        self.required_namespaces = required_namespaces
        self.approval = asyncio.get_running_loop().create_future()
        return self.uri, self.pairing_topic, self.approval

    def settle(
        self,
        topic: str = SESSION_TOPIC,
        accounts: tuple[str, ...] = ("hedera:testnet:0.0.4821",),
        expiry: int | None = None,
    ) -> None:
        params: dict[str, Any] = {
            "pairingTopic": self.pairing_topic,
            "topic": topic,
            "namespaces": {
                "hedera": {
                    "accounts": list(accounts),
                    "chains": ["hedera:testnet"],
                    "methods": ["hedera_signMessage"],
                    "events": [],
                }
            },
        }
        if expiry is not None:
            params["expiry"] = expiry
        self.approval.set_result(params)

    def reject(self, reason: str = "User rejected") -> None:
        self.approval.set_exception(RelayError(reason))

    async def request(self, topic: str, chain_id: str, method: str, params: Any) -> Any:
        self.requests.append((topic, chain_id, method, params))
        if self.responder is None:
            raise RelayError("No wallet attached")
        result = self.responder(method, params)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def disconnect(self, topic: str) -> None:
        self.disconnected.append(topic)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def transport() -> FakeRelayTransport:
    return FakeRelayTransport()
