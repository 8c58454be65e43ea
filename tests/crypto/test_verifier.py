"""Tests for the encoding-tolerant signature verifier.

Tests cover:
- Message encoding priority (raw, prefixed, base64)
- Tamper detection on message, signature and key
- Equivalence of key encodings (hex, base64, DER hex)
- Signature maps, including key-prefix mismatch
"""

from __future__ import annotations

import base64
import json

import pytest

from didsign.core.exceptions import EncodingError, PrefixMismatchError, SignatureInvalidError
from didsign.crypto.verifier import (
    ENCODING_BASE64,
    ENCODING_PREFIXED,
    ENCODING_RAW,
    SignatureVerifier,
    is_signature_map,
    parse_signature_map,
)

MESSAGE = "4c1f5b2e0f3a9d7e6b8c2a1d0e9f8a7b6c5d4e3f2a1b0c9d8e7f6a5b4c3d2e1f"


@pytest.fixture
def verifier() -> SignatureVerifier:
    return SignatureVerifier()


def _flip(data: bytes, index: int = 0) -> bytes:
    return data[:index] + bytes([data[index] ^ 0x01]) + data[index + 1 :]


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


class TestMessageCandidates:
    def test_order(self, verifier):
        names = [name for name, _ in verifier.message_candidates(MESSAGE)]
        assert names == [ENCODING_RAW, ENCODING_PREFIXED, ENCODING_BASE64]

    def test_prefixed_form(self, verifier):
        raw = b"hello"
        assert verifier.prefixed_message(raw) == b"\x19Hedera Signed Message:\n5hello"

    def test_prefixed_length_counts_bytes(self, verifier):
        raw = "é".encode()
        assert verifier.prefixed_message(raw).endswith(b"2" + raw)

    def test_base64_form(self, verifier):
        candidates = dict(verifier.message_candidates("abc"))
        assert candidates[ENCODING_BASE64] == b"YWJj"


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class TestVerify:
    def test_raw_signature(self, verifier, signer):
        sig = signer.sign_hex(MESSAGE)
        result = verifier.verify(signer.public_key_hex, MESSAGE, sig)
        assert result.verified
        assert result.encoding == ENCODING_RAW

    def test_prefixed_signature(self, verifier, signer):
        sig = signer.sign(verifier.prefixed_message(MESSAGE.encode()))
        result = verifier.verify(signer.public_key_hex, MESSAGE, sig.hex())
        assert result.encoding == ENCODING_PREFIXED

    def test_base64_signature(self, verifier, signer):
        sig = signer.sign(base64.b64encode(MESSAGE.encode()))
        result = verifier.verify(signer.public_key_hex, MESSAGE, sig.hex())
        assert result.encoding == ENCODING_BASE64

    def test_prefixed_signature_does_not_verify_raw(self, verifier, signer):
        sig = signer.sign(verifier.prefixed_message(MESSAGE.encode()))
        raw_only = SignatureVerifier(message_prefix="\x19Other Signed Message:\n")
        assert not raw_only.is_valid(signer.public_key_hex, MESSAGE, sig.hex())

    def test_signature_as_base64(self, verifier, signer):
        sig = base64.b64encode(signer.sign(MESSAGE)).decode()
        assert verifier.verify(signer.public_key_hex, MESSAGE, sig).encoding == ENCODING_RAW

    def test_result_to_dict(self, verifier, signer):
        result = verifier.verify(signer.public_key_hex, MESSAGE, signer.sign_hex(MESSAGE))
        assert result.to_dict() == {"verified": True, "encoding": "raw"}

    @pytest.mark.parametrize("form", ["public_key_hex", "public_key_base64", "public_key_der_hex"])
    def test_key_encodings_equivalent(self, verifier, signer, form):
        sig = signer.sign_hex(MESSAGE)
        assert verifier.verify(getattr(signer, form), MESSAGE, sig).encoding == ENCODING_RAW


class TestTamperDetection:
    def test_tampered_message(self, verifier, signer):
        sig = signer.sign_hex(MESSAGE)
        tampered = ("0" if MESSAGE[0] != "0" else "1") + MESSAGE[1:]
        with pytest.raises(SignatureInvalidError) as exc_info:
            verifier.verify(signer.public_key_hex, tampered, sig)
        assert exc_info.value.details["encodings"] == ["raw", "prefixed", "base64"]

    @pytest.mark.parametrize("index", [0, 31, 63])
    def test_tampered_signature(self, verifier, signer, index):
        sig = _flip(signer.sign(MESSAGE), index)
        assert not verifier.is_valid(signer.public_key_hex, MESSAGE, sig.hex())

    def test_tampered_key(self, verifier, signer):
        sig = signer.sign_hex(MESSAGE)
        key = _flip(signer.raw_public_key, 5)
        assert not verifier.is_valid(key.hex(), MESSAGE, sig)

    def test_wrong_key(self, verifier, signer, other_signer):
        sig = signer.sign_hex(MESSAGE)
        with pytest.raises(SignatureInvalidError):
            verifier.verify(other_signer.public_key_hex, MESSAGE, sig)


class TestEncodingFailures:
    def test_undecodable_signature(self, verifier, signer):
        with pytest.raises(EncodingError):
            verifier.verify(signer.public_key_hex, MESSAGE, "not-a-signature!")

    def test_undecodable_key(self, verifier, signer):
        with pytest.raises(EncodingError):
            verifier.verify("zz", MESSAGE, signer.sign_hex(MESSAGE))

    def test_truncated_hex_key_is_encoding_error(self, verifier, signer):
        with pytest.raises(EncodingError):
            verifier.verify(signer.public_key_hex[:-2], MESSAGE, signer.sign_hex(MESSAGE))

    def test_non_string_message(self, verifier, signer):
        with pytest.raises(EncodingError):
            verifier.verify(signer.public_key_hex, b"bytes", signer.sign_hex("bytes"))

    def test_is_valid_swallows_encoding_errors(self, verifier, signer):
        assert verifier.is_valid(signer.public_key_hex, MESSAGE, "###") is False


# ---------------------------------------------------------------------------
# Signature maps
# ---------------------------------------------------------------------------


class TestSignatureMaps:
    def test_parse_dict(self, signer):
        sig = signer.sign(MESSAGE)
        pairs = parse_signature_map(
            {"sigPair": [{"pubKeyPrefix": signer.raw_public_key[:4].hex(), "ed25519": sig.hex()}]}
        )
        assert pairs == [(signer.raw_public_key[:4], sig)]

    def test_parse_json_string(self, signer):
        sig = signer.sign(MESSAGE)
        text = json.dumps({"sigPair": [{"ed25519": list(sig)}]})
        assert parse_signature_map(text) == [(b"", sig)]

    def test_parse_rejects_empty(self):
        with pytest.raises(EncodingError):
            parse_signature_map({"sigPair": []})

    def test_parse_rejects_invalid_json(self):
        with pytest.raises(EncodingError):
            parse_signature_map("{not json")

    def test_is_signature_map(self):
        assert is_signature_map({"sigPair": []})
        assert is_signature_map('{"sigPair": []}')
        assert not is_signature_map("abcd")
        assert not is_signature_map({"signature": "abcd"})

    def test_verify_map_with_matching_prefix(self, verifier, signer):
        sig = signer.sign(MESSAGE)
        signature_map = {
            "sigPair": [
                {"pubKeyPrefix": signer.raw_public_key[:6].hex(), "ed25519": base64.b64encode(sig).decode()}
            ]
        }
        assert verifier.verify(signer.public_key_hex, MESSAGE, signature_map).encoding == ENCODING_RAW

    def test_first_pair_with_signature_wins(self, verifier, signer):
        sig = signer.sign(MESSAGE)
        signature_map = {"sigPair": [{"pubKeyPrefix": "", "ed25519": ""}, {"ed25519": sig.hex()}]}
        assert verifier.is_valid(signer.public_key_der_hex, MESSAGE, signature_map)

    def test_prefix_mismatch_raised_before_crypto(self, verifier, signer, other_signer):
        sig = signer.sign(MESSAGE)
        signature_map = {"sigPair": [{"pubKeyPrefix": other_signer.raw_public_key[:4].hex(), "ed25519": sig.hex()}]}
        with pytest.raises(PrefixMismatchError):
            verifier.verify(signer.public_key_hex, MESSAGE, signature_map)

    def test_map_without_signature(self, verifier, signer):
        with pytest.raises(EncodingError, match="No ed25519 signature"):
            verifier.resolve_material(signer.public_key_hex, {"sigPair": [{"pubKeyPrefix": "ab"}]})
