# SPDX-License-Identifier: MIT
# Copyright (c) 2026 didsign Contributors

"""Cryptographic primitives for didsign.

- ``canonical``: order-independent serialization of operation intent
- ``encoding``: key/signature decoding across hex, DER, base64 and multibase
- ``verifier``: multi-encoding Ed25519 verification, signature maps included
"""

from didsign.crypto.canonical import build_signing_payload, canonicalize, sha256_hex
from didsign.crypto.encoding import (
    decode_public_key,
    decode_signature,
    multibase_decode,
    multibase_encode,
    public_key_to_der_hex,
)
from didsign.crypto.verifier import (
    ENCODING_BASE64,
    ENCODING_PREFIXED,
    ENCODING_RAW,
    SignatureVerifier,
    VerificationResult,
)

__all__ = [
    "ENCODING_BASE64",
    "ENCODING_PREFIXED",
    "ENCODING_RAW",
    "SignatureVerifier",
    "VerificationResult",
    "build_signing_payload",
    "canonicalize",
    "decode_public_key",
    "decode_signature",
    "multibase_decode",
    "multibase_encode",
    "public_key_to_der_hex",
    "sha256_hex",
]
