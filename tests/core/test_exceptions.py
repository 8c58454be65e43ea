"""Tests for didsign.core.exceptions."""

from __future__ import annotations

import pytest

from didsign.core.exceptions import (
    ConfigException,
    ConflictError,
    DIDSignError,
    EncodingError,
    ExpiredError,
    InvalidStateError,
    LedgerExecutionFailedError,
    MismatchError,
    NotFoundError,
    PairingFailedError,
    PairingTimeoutError,
    PrefixMismatchError,
    SignatureInvalidError,
    ValidationError,
)


class TestDIDSignError:
    def test_to_dict(self):
        err = DIDSignError("boom", {"k": "v"})
        assert err.to_dict() == {
            "error": "DIDSignError",
            "code": "error",
            "message": "boom",
            "details": {"k": "v"},
        }

    def test_str_is_message(self):
        assert str(DIDSignError("boom")) == "boom"

    @pytest.mark.parametrize(
        "exc",
        [
            NotFoundError("Operation", "op-1"),
            InvalidStateError("bad"),
            ExpiredError("op-1"),
            MismatchError("did"),
            SignatureInvalidError("bad sig"),
            EncodingError("bad hex"),
            PrefixMismatchError("prefix"),
            PairingTimeoutError(300),
            PairingFailedError("relay down"),
            LedgerExecutionFailedError("rejected"),
            ConflictError("dup"),
            ValidationError("invalid"),
            ConfigException("missing"),
        ],
    )
    def test_hierarchy(self, exc):
        assert isinstance(exc, DIDSignError)
        assert exc.to_dict()["error"] == type(exc).__name__


class TestSubclasses:
    def test_not_found(self):
        err = NotFoundError("DID", "did:hedera:testnet:abc")
        assert err.message == "DID not found: did:hedera:testnet:abc"
        assert err.details == {"resource_type": "DID", "resource_id": "did:hedera:testnet:abc"}
        assert err.code == "not_found"

    def test_invalid_state_details(self):
        err = InvalidStateError("nope", operation_id="op-1", status="completed")
        assert err.details == {"operation_id": "op-1", "status": "completed"}
        assert InvalidStateError("nope").details == {}

    def test_mismatch_default_message(self):
        err = MismatchError("signingPayload")
        assert err.message == "signingPayload mismatch"
        assert err.field == "signingPayload"

    def test_encoding_error_truncates_value(self):
        err = EncodingError("bad", field="signature", value="a" * 100)
        assert err.details["field"] == "signature"
        assert err.details["value"] == "a" * 64 + "..."

    def test_prefix_mismatch_is_encoding_error(self):
        err = PrefixMismatchError("prefix", field="pubKeyPrefix")
        assert isinstance(err, EncodingError)
        assert not isinstance(err, SignatureInvalidError)
        assert err.code == "prefix_mismatch"

    def test_pairing_timeout_message(self):
        err = PairingTimeoutError(300.0)
        assert err.message == "Session approval timed out after 300s"
        assert err.details == {"timeout_seconds": 300.0}

    def test_config_exception_missing_vars(self):
        err = ConfigException("Relay URL is required", missing_vars=["DIDSIGN_RELAY_URL"])
        assert err.missing_vars == ["DIDSIGN_RELAY_URL"]
        assert err.to_dict()["code"] == "config_error"
