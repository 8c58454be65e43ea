# SPDX-License-Identifier: MIT
# Copyright (c) 2026 didsign Contributors

"""Encoding-tolerant Ed25519 signature verification.

Different wallets sign different byte representations of the same message.
:class:`SignatureVerifier` tries, in a fixed order:

1. ``raw``: the UTF-8 bytes of the message (HashPack-style wallets)
2. ``prefixed``: ``"\\x19Hedera Signed Message:\\n" + len(raw) + raw``
3. ``base64``: the UTF-8 bytes of the message's base64 text (wallets that
   sign the transport string rather than the bytes it carries)

and accepts the first candidate that verifies. The order is part of the
contract: reordering changes which previously-accepted signatures verify.

Signatures may also arrive as a *signature map*: a list of
``(pubKeyPrefix, ed25519)`` pairs. The first pair with non-empty signature
bytes is used, and a non-empty prefix must match the stored key before any
cryptography runs.
"""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from didsign.core.config import HEDERA_SIGNED_MESSAGE_PREFIX
from didsign.core.exceptions import EncodingError, PrefixMismatchError, SignatureInvalidError
from didsign.core.logging import redact
from didsign.crypto.encoding import decode_bytes_field, decode_public_key, decode_signature

logger = logging.getLogger(__name__)

ENCODING_RAW = "raw"
ENCODING_PREFIXED = "prefixed"
ENCODING_BASE64 = "base64"

_PAIR_LIST_KEYS = ("sigPair", "sig_pair", "sigPairs")
_PREFIX_KEYS = ("pubKeyPrefix", "pub_key_prefix")
_SIGNATURE_KEYS = ("ed25519", "ed25519Signature", "signature")


@dataclass(frozen=True)
class SignatureMaterial:
    """Decoded bytes for one verification attempt."""

    public_key: bytes
    signature: bytes
    key_prefix: bytes = b""


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a successful verification."""

    verified: bool
    encoding: str

    def to_dict(self) -> dict[str, Any]:
        return {"verified": self.verified, "encoding": self.encoding}


def _first_present(mapping: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in mapping and mapping[key] is not None:
            return mapping[key]
    return None


def parse_signature_map(value: Mapping[str, Any] | str) -> list[tuple[bytes, bytes]]:
    """Parse a signature map into ``(key_prefix, signature)`` byte pairs.

    Accepts a mapping or its JSON text. Pairs keep their original order.

    Raises:
        EncodingError: If the value is not a signature map or has no pairs.
    """
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            raise EncodingError("Signature map is not valid JSON", field="signature") from exc
    if not isinstance(value, Mapping):
        raise EncodingError("Signature map must be an object", field="signature")

    pairs = _first_present(value, _PAIR_LIST_KEYS)
    if not pairs:
        raise EncodingError("Signature map has no sigPair entries", field="signature")

    parsed = []
    for pair in pairs:
        if not isinstance(pair, Mapping):
            raise EncodingError("Signature map entry must be an object", field="signature")
        prefix = decode_bytes_field(_first_present(pair, _PREFIX_KEYS))
        signature = decode_bytes_field(_first_present(pair, _SIGNATURE_KEYS))
        parsed.append((prefix, signature))
    return parsed


def is_signature_map(value: Any) -> bool:
    if isinstance(value, Mapping):
        return any(key in value for key in _PAIR_LIST_KEYS)
    if isinstance(value, str) and value.lstrip().startswith("{"):
        return True
    return False


class SignatureVerifier:
    """Verify Ed25519 signatures across the encodings wallets produce.

    Stateless apart from the configured message prefix; safe to share.
    """

    def __init__(self, message_prefix: str = HEDERA_SIGNED_MESSAGE_PREFIX) -> None:
        self.message_prefix = message_prefix

    # -- candidates ---------------------------------------------------------

    def prefixed_message(self, raw: bytes) -> bytes:
        """Protocol-prefixed form: prefix, decimal ASCII length, raw bytes."""
        return self.message_prefix.encode("utf-8") + str(len(raw)).encode("ascii") + raw

    def message_candidates(self, message: str) -> list[tuple[str, bytes]]:
        """Return the byte representations to try, in priority order."""
        raw = message.encode("utf-8")
        return [
            (ENCODING_RAW, raw),
            (ENCODING_PREFIXED, self.prefixed_message(raw)),
            (ENCODING_BASE64, base64.b64encode(raw)),
        ]

    # -- material -----------------------------------------------------------

    def resolve_material(
        self,
        public_key: str | bytes,
        signature: str | bytes | Mapping[str, Any],
    ) -> SignatureMaterial:
        """Decode key and signature, unpacking signature maps.

        Raises:
            EncodingError: For undecodable input.
            PrefixMismatchError: When a signature map names a different key.
        """
        key_bytes = decode_public_key(public_key)

        if isinstance(signature, (bytes, bytearray)) or not is_signature_map(signature):
            return SignatureMaterial(public_key=key_bytes, signature=decode_signature(signature))

        pairs = parse_signature_map(signature)
        for prefix, sig_bytes in pairs:
            if not sig_bytes:
                continue
            if prefix and not key_bytes.startswith(prefix):
                raise PrefixMismatchError(
                    "Public key prefix mismatch between stored key and signature map",
                    field="pubKeyPrefix",
                    value=prefix.hex(),
                )
            return SignatureMaterial(
                public_key=key_bytes,
                signature=decode_signature(sig_bytes),
                key_prefix=prefix,
            )
        raise EncodingError("No ed25519 signature found in signature map", field="signature")

    # -- verification -------------------------------------------------------

    def verify(
        self,
        public_key: str | bytes,
        message: str,
        signature: str | bytes | Mapping[str, Any],
    ) -> VerificationResult:
        """Verify ``signature`` over ``message`` with ``public_key``.

        Returns:
            A :class:`VerificationResult` naming the message encoding that
            verified.

        Raises:
            EncodingError: Key, signature or map could not be decoded
                (including :class:`PrefixMismatchError`).
            SignatureInvalidError: Inputs are well-formed but no candidate
                message verifies.
        """
        if not isinstance(message, str):
            raise EncodingError("Message must be a string", field="message", value=message)

        material = self.resolve_material(public_key, signature)
        try:
            key = Ed25519PublicKey.from_public_bytes(material.public_key)
        except ValueError as exc:
            raise EncodingError("Invalid Ed25519 public key", field="public_key") from exc

        logger.debug(
            "Verifying signature %s for key %s over message of %d chars",
            redact(material.signature),
            redact(material.public_key),
            len(message),
        )

        for encoding, candidate in self.message_candidates(message):
            try:
                key.verify(material.signature, candidate)
            except InvalidSignature:
                logger.debug("Signature did not verify with %s message encoding", encoding)
                continue
            logger.debug("Signature verified with %s message encoding", encoding)
            return VerificationResult(verified=True, encoding=encoding)

        raise SignatureInvalidError(
            "Signature verification failed for all message encodings",
            {"encodings": [name for name, _ in self.message_candidates(message)]},
        )

    def is_valid(
        self,
        public_key: str | bytes,
        message: str,
        signature: str | bytes | Mapping[str, Any],
    ) -> bool:
        """Boolean form of :meth:`verify`; encoding and signature errors give ``False``."""
        try:
            return self.verify(public_key, message, signature).verified
        except EncodingError as exc:
            logger.warning("Signature input could not be decoded: %s", exc.message)
            return False
        except SignatureInvalidError:
            return False
