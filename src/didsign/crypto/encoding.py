# SPDX-License-Identifier: MIT
# Copyright (c) 2026 didsign Contributors

"""Decoding of Ed25519 keys and signatures from the encodings wallets emit.

Wallets disagree on how they ship key material. Public keys arrive as raw
hex, DER (SPKI) hex, base64 of either form, or multibase base58btc; and
signatures as hex or base64. Everything here reduces those to raw bytes or
raises :class:`EncodingError`.
"""

from __future__ import annotations

import base64
import binascii
import re

from didsign.core.exceptions import EncodingError

# =============================================================================
# CONSTANTS
# =============================================================================

PUBLIC_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64

# SubjectPublicKeyInfo header for an Ed25519 key (RFC 8410); the raw key follows
ED25519_DER_PREFIX = bytes.fromhex("302a300506032b6570032100")
ED25519_DER_PREFIX_HEX = ED25519_DER_PREFIX.hex()

# Multibase prefix for base58btc encoding
MULTIBASE_BASE58BTC = "z"

# Multicodec prefix for Ed25519 public key (0xed01)
MULTICODEC_ED25519_PUB = bytes([0xED, 0x01])

_HEX_RE = re.compile(r"^(0x)?[0-9a-fA-F]+$")


# =============================================================================
# BASE58 ENCODING
# =============================================================================

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def base58_encode(data: bytes) -> str:
    """Encode bytes to base58 string."""
    num = int.from_bytes(data, "big")
    result = ""
    while num > 0:
        num, remainder = divmod(num, 58)
        result = BASE58_ALPHABET[remainder] + result

    # Leading zero bytes map to leading '1's
    for byte in data:
        if byte == 0:
            result = BASE58_ALPHABET[0] + result
        else:
            break

    return result


def base58_decode(string: str) -> bytes:
    """Decode base58 string to bytes.

    Raises:
        EncodingError: If the string contains characters outside the alphabet.
    """
    num = 0
    for char in string:
        index = BASE58_ALPHABET.find(char)
        if index < 0:
            raise EncodingError(f"Invalid base58 character: {char!r}", field="base58")
        num = num * 58 + index

    result = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""

    leading = len(string) - len(string.lstrip(BASE58_ALPHABET[0]))
    return b"\x00" * leading + result


def multibase_encode(data: bytes) -> str:
    """Encode bytes to multibase (base58btc)."""
    return MULTIBASE_BASE58BTC + base58_encode(data)


def multibase_decode(string: str) -> bytes:
    """Decode multibase string to bytes."""
    if not string.startswith(MULTIBASE_BASE58BTC):
        raise EncodingError(f"Unsupported multibase encoding: {string[:1]!r}", field="multibase")
    return base58_decode(string[1:])


# =============================================================================
# PRIMITIVE DECODERS
# =============================================================================


def _strip_hex_prefix(value: str) -> str:
    return value[2:] if value[:2].lower() == "0x" else value


def is_hex(value: str) -> bool:
    return bool(_HEX_RE.match(value)) and len(_strip_hex_prefix(value)) % 2 == 0


def decode_hex(value: str) -> bytes:
    try:
        return bytes.fromhex(_strip_hex_prefix(value))
    except ValueError as exc:
        raise EncodingError("Invalid hex string", field="hex", value=value) from exc


def decode_base64(value: str) -> bytes:
    """Decode standard or URL-safe base64, tolerating missing padding."""
    text = value.strip()
    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError):
        pass
    try:
        return base64.b64decode(padded, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EncodingError("Invalid base64 string", field="base64", value=value) from exc


# =============================================================================
# PUBLIC KEYS
# =============================================================================


def _trailing_key(raw: bytes, source: str, value: object) -> bytes:
    if len(raw) < PUBLIC_KEY_LENGTH:
        raise EncodingError(
            f"Public key too short after {source} decoding ({len(raw)} bytes)",
            field="public_key",
            value=value,
        )
    return raw[-PUBLIC_KEY_LENGTH:]


def decode_public_key(value: str | bytes | bytearray) -> bytes:
    """Reduce an encoded Ed25519 public key to its 32 raw bytes.

    Accepted forms, tried in this order:

    * raw bytes (32, or a longer DER blob whose last 32 bytes are the key)
    * 64-char hex
    * DER hex starting with the Ed25519 SPKI prefix
    * multibase base58btc (``z...``); trailing 32 bytes, which drops the
      ``0xed01`` multicodec header
    * base64 of 32 bytes or of a longer DER blob (trailing 32 bytes)

    Raises:
        EncodingError: If no rule yields exactly 32 bytes, or a hex string
            matches neither hex rule.
    """
    if isinstance(value, (bytes, bytearray)):
        return _trailing_key(bytes(value), "raw", bytes(value).hex())

    if not isinstance(value, str) or not value.strip():
        raise EncodingError("Public key is empty or not a string", field="public_key", value=value)

    text = value.strip()

    if is_hex(text):
        hex_body = _strip_hex_prefix(text).lower()
        if len(hex_body) == PUBLIC_KEY_LENGTH * 2:
            return bytes.fromhex(hex_body)
        if hex_body.startswith(ED25519_DER_PREFIX_HEX) and len(hex_body) == (
            len(ED25519_DER_PREFIX) + PUBLIC_KEY_LENGTH
        ) * 2:
            return bytes.fromhex(hex_body)[-PUBLIC_KEY_LENGTH:]
        # Hex digits are valid base64 too; never fall through.
        raise EncodingError(
            f"Hex public key must be 64 chars or Ed25519 DER hex (got {len(hex_body)} chars)",
            field="public_key",
            value=text,
        )

    if text.startswith(MULTIBASE_BASE58BTC) and all(c in BASE58_ALPHABET for c in text[1:]):
        return _trailing_key(multibase_decode(text), "multibase", text)

    try:
        raw = decode_base64(text)
    except EncodingError:
        raise EncodingError(
            "Unrecognized public key encoding (expected hex, DER hex, base64 or multibase)",
            field="public_key",
            value=text,
        ) from None
    return _trailing_key(raw, "base64", text)


def public_key_to_der_hex(raw: bytes) -> str:
    """Wrap a raw 32-byte key in the DER prefix wallets commonly display."""
    if len(raw) != PUBLIC_KEY_LENGTH:
        raise EncodingError("Raw public key must be 32 bytes", field="public_key", value=raw.hex())
    return (ED25519_DER_PREFIX + raw).hex()


# =============================================================================
# SIGNATURES
# =============================================================================


def decode_signature(value: str | bytes | bytearray) -> bytes:
    """Decode a hex or base64 signature to its 64 raw bytes.

    Raises:
        EncodingError: If the value does not decode, or decodes to the wrong length.
    """
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if is_hex(text) and len(_strip_hex_prefix(text)) == SIGNATURE_LENGTH * 2:
            raw = decode_hex(text)
        else:
            try:
                raw = decode_base64(text)
            except EncodingError:
                raise EncodingError(
                    "Unrecognized signature encoding (expected hex or base64)",
                    field="signature",
                    value=text,
                ) from None
    else:
        raise EncodingError("Signature is empty or not a string", field="signature", value=value)

    if len(raw) != SIGNATURE_LENGTH:
        raise EncodingError(
            f"Signature must be {SIGNATURE_LENGTH} bytes, got {len(raw)}",
            field="signature",
        )
    return raw


def decode_bytes_field(value: str | bytes | bytearray | list[int] | None) -> bytes:
    """Decode a binary field from a parsed signature map.

    JSON-serialized maps carry bytes as hex, base64, or a list of ints.
    ``{"type": "Buffer", "data": [...]}`` and index-keyed objects
    (``{"0": 12, "1": 34}``, a stringified ``Uint8Array``) are unwrapped too.
    Strings that are valid hex are read as hex.
    """
    if value is None:
        return b""
    if isinstance(value, dict):
        if not value:
            return b""
        if isinstance(value.get("data"), list):
            value = value["data"]
        elif value and all(str(k).isdigit() for k in value):
            value = [value[k] for k in sorted(value, key=int)]
        else:
            raise EncodingError("Unsupported byte object in signature map")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, list):
        try:
            return bytes(value)
        except (TypeError, ValueError) as exc:
            raise EncodingError("Invalid byte list in signature map") from exc
    if isinstance(value, str):
        if not value:
            return b""
        if is_hex(value):
            return decode_hex(value)
        return decode_base64(value)
    raise EncodingError(f"Unsupported byte field type: {type(value).__name__}")
