"""Tests for PairingBroker.

Tests cover:
- Pairing creation and approval
- Approval timeout and rejection
- Session lookup and expiry
- Request relaying and error propagation
"""

from __future__ import annotations

import asyncio

import pytest

from didsign.core.config import CoreSettings
from didsign.core.exceptions import (
    ConfigException,
    NotFoundError,
    PairingFailedError,
    PairingTimeoutError,
)
from didsign.pairing.broker import GET_PUBLIC_KEY_METHOD, PairingBroker
from didsign.pairing.models import PairingSession
from didsign.pairing.relay import RelayError, WebSocketRelayTransport

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def broker(transport, settings, clock) -> PairingBroker:
    return PairingBroker(transport, settings=settings, clock=clock)


async def _paired(broker: PairingBroker, transport) -> PairingSession:
    pairing = await broker.create_pairing("op-1")
    transport.settle()
    return await pairing.approval()


# =============================================================================
# Pairing
# =============================================================================


class TestCreatePairing:
    @pytest.mark.asyncio
    async def test_returns_uri_immediately(self, broker, transport, settings):
        pairing = await broker.create_pairing()

        assert pairing.uri == transport.uri
        assert pairing.pairing_topic == transport.pairing_topic
        assert transport.required_namespaces == settings.required_namespaces

    @pytest.mark.asyncio
    async def test_approval_registers_session(self, broker, transport):
        session = await _paired(broker, transport)

        assert session.topic == "b7d4e2"
        assert session.account_id == "0.0.4821"
        assert broker.get_session("b7d4e2") is session

    @pytest.mark.asyncio
    async def test_session_expiry_defaults_to_ttl(self, broker, transport, clock, settings):
        session = await _paired(broker, transport)
        assert session.expiry == clock() + settings.session_ttl

    @pytest.mark.asyncio
    async def test_approval_timeout(self, broker):
        pairing = await broker.create_pairing()
        with pytest.raises(PairingTimeoutError):
            await pairing.approval()

    @pytest.mark.asyncio
    async def test_rejection(self, broker, transport):
        pairing = await broker.create_pairing()
        transport.reject("User rejected")
        with pytest.raises(PairingFailedError, match="User rejected"):
            await pairing.approval()

    @pytest.mark.asyncio
    async def test_unexpected_approval_error_wrapped(self, broker, transport):
        pairing = await broker.create_pairing()
        transport.approval.set_exception(RuntimeError("socket gone"))
        with pytest.raises(PairingFailedError, match="socket gone"):
            await pairing.approval()

    @pytest.mark.asyncio
    async def test_malformed_settle(self, broker, transport):
        pairing = await broker.create_pairing()
        transport.approval.set_result({"namespaces": {}})
        with pytest.raises(PairingFailedError, match="Malformed"):
            await pairing.approval()

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self, broker, transport):
        transport.connect_error = OSError("connection refused")
        with pytest.raises(PairingFailedError, match="connection refused"):
            await broker.create_pairing()

    @pytest.mark.asyncio
    async def test_relay_error_propagates(self, broker, transport):
        transport.connect_error = RelayError("relay said no", code=5000)
        with pytest.raises(RelayError) as exc_info:
            await broker.create_pairing()
        assert exc_info.value.relay_code == 5000

    @pytest.mark.asyncio
    async def test_empty_uri(self, broker, transport):
        transport.uri = ""
        with pytest.raises(PairingFailedError):
            await broker.create_pairing()


# =============================================================================
# Sessions
# =============================================================================


class TestSessions:
    @pytest.mark.asyncio
    async def test_expired_session_dropped(self, broker, transport, clock):
        await _paired(broker, transport)
        clock.advance(hours=2)
        assert broker.get_session("b7d4e2") is None

    @pytest.mark.asyncio
    async def test_wallet_reported_expiry(self, broker, transport, clock):
        pairing = await broker.create_pairing()
        transport.settle(expiry=int(clock().timestamp()) + 60)
        await pairing.approval()

        clock.advance(seconds=30)
        assert broker.get_session("b7d4e2") is not None
        clock.advance(seconds=31)
        assert broker.get_session("b7d4e2") is None

    def test_register_and_forget(self, broker):
        session = PairingSession(topic="restored")
        broker.register_session(session)
        assert broker.get_session("restored") is session
        broker.forget_session("restored")
        assert broker.get_session("restored") is None

    @pytest.mark.asyncio
    async def test_disconnect(self, broker, transport):
        await _paired(broker, transport)
        await broker.disconnect("b7d4e2")
        assert broker.get_session("b7d4e2") is None
        assert transport.disconnected == ["b7d4e2"]

    def test_extract_account_id(self):
        session = PairingSession(topic="t", namespaces={"hedera": {"accounts": ["hedera:testnet:0.0.3"]}})
        assert PairingBroker.extract_account_id(session) == "0.0.3"


# =============================================================================
# Requests
# =============================================================================


class TestSendRequest:
    @pytest.mark.asyncio
    async def test_unknown_topic(self, broker):
        with pytest.raises(NotFoundError):
            await broker.send_request("nope", "hedera_signMessage", [{}])

    @pytest.mark.asyncio
    async def test_relays_with_session_chain(self, broker, transport):
        await _paired(broker, transport)
        transport.responder = lambda method, params: {"signature": "ab" * 64}

        result = await broker.send_request("b7d4e2", "hedera_signMessage", [{"message": "m"}])

        assert result == {"signature": "ab" * 64}
        assert transport.requests == [("b7d4e2", "hedera:testnet", "hedera_signMessage", {"message": "m"})]

    @pytest.mark.asyncio
    async def test_multi_param_list_kept(self, broker, transport):
        await _paired(broker, transport)
        transport.responder = lambda method, params: params

        assert await broker.send_request("b7d4e2", "custom", [1, 2]) == [1, 2]

    @pytest.mark.asyncio
    async def test_errors_propagate_unchanged(self, broker, transport):
        await _paired(broker, transport)

        def fail(method, params):
            raise RelayError("User rejected request", code=5000)

        transport.responder = fail
        with pytest.raises(RelayError) as exc_info:
            await broker.send_request("b7d4e2", "hedera_signMessage", [{}])
        assert exc_info.value.relay_code == 5000

    @pytest.mark.asyncio
    async def test_request_message_signature(self, broker, transport):
        await _paired(broker, transport)
        transport.responder = lambda method, params: "sig"

        await broker.request_message_signature("b7d4e2", "0.0.4821", "hello")

        _, _, method, params = transport.requests[0]
        assert method == "hedera_signMessage"
        assert params == {"signerAccountId": "0.0.4821", "message": "hello", "encoding": "utf8"}

    @pytest.mark.asyncio
    async def test_get_public_key(self, broker, transport, signer):
        await _paired(broker, transport)
        transport.responder = lambda method, params: signer.public_key_der_hex

        assert await broker.get_public_key("b7d4e2", "0.0.4821") == signer.public_key_der_hex
        assert transport.requests[0][2] == GET_PUBLIC_KEY_METHOD

    @pytest.mark.asyncio
    async def test_get_public_key_invalid_response(self, broker, transport):
        await _paired(broker, transport)

        async def respond(method, params):
            await asyncio.sleep(0)
            return {"publicKey": None}

        transport.responder = respond
        with pytest.raises(PairingFailedError):
            await broker.get_public_key("b7d4e2", "0.0.4821")


# =============================================================================
# Construction
# =============================================================================


class TestFromSettings:
    def test_builds_websocket_transport(self, clean_env):
        settings = CoreSettings(relay_url="ws://127.0.0.1:9/relay", project_id="proj")
        broker = PairingBroker.from_settings(settings)

        assert isinstance(broker.transport, WebSocketRelayTransport)
        assert broker.transport.project_id == "proj"

        broker.register_session(PairingSession(topic="gone"))
        broker.transport.on_session_delete("gone")
        assert broker.get_session("gone") is None

    def test_missing_relay_url(self, clean_env):
        with pytest.raises(ConfigException):
            PairingBroker.from_settings(CoreSettings(relay_url=""))
