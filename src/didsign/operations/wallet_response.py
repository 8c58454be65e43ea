"""Parsing of wallet replies to a sign request.

Wallets answer ``hedera_signMessage`` in several shapes: a bare signature
string, an object with ``signature``/``sig`` (and maybe a public key under
one of three names), an object carrying a signature map, or any of these
wrapped in ``{"result": ...}``. Each strategy below returns a
:class:`WalletSignature` or ``None``; the first non-``None`` result wins.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

_SIGNATURE_KEYS = ("signature", "sig")
_PUBLIC_KEY_KEYS = ("publicKey", "pubKey", "public_key")
_SIGNATURE_MAP_KEYS = ("signatureMap", "sigMap", "signature_map")

MAX_NESTING = 3


@dataclass(frozen=True)
class WalletSignature:
    """A signature extracted from a wallet reply."""

    signature: Any
    public_key: str | None = None
    source: str = ""


def _first(mapping: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value:
            return value
    return None


def _public_key(mapping: Mapping[str, Any]) -> str | None:
    value = _first(mapping, _PUBLIC_KEY_KEYS)
    return value if isinstance(value, str) else None


def from_string(response: Any) -> WalletSignature | None:
    if isinstance(response, str) and response.strip():
        return WalletSignature(signature=response.strip(), source="string")
    return None


def from_signature_fields(response: Any) -> WalletSignature | None:
    if not isinstance(response, Mapping):
        return None
    signature = _first(response, _SIGNATURE_KEYS)
    if signature is None or isinstance(signature, (int, float, bool)):
        return None
    return WalletSignature(signature=signature, public_key=_public_key(response), source="fields")


def from_signature_map(response: Any) -> WalletSignature | None:
    if not isinstance(response, Mapping):
        return None
    signature_map = _first(response, _SIGNATURE_MAP_KEYS)
    if signature_map is None and ("sigPair" in response or "sig_pair" in response):
        signature_map = response
    if signature_map is None:
        return None
    return WalletSignature(signature=signature_map, public_key=_public_key(response), source="signature_map")


PARSE_STRATEGIES: list[Callable[[Any], WalletSignature | None]] = [
    from_string,
    from_signature_fields,
    from_signature_map,
]


def parse_wallet_response(response: Any, _depth: int = 0) -> WalletSignature | None:
    """Extract a signature from ``response``; ``None`` if no strategy matches."""
    for strategy in PARSE_STRATEGIES:
        parsed = strategy(response)
        if parsed is not None:
            return parsed
    if isinstance(response, Mapping) and "result" in response and _depth < MAX_NESTING:
        return parse_wallet_response(response["result"], _depth + 1)
    return None
