"""Deterministic serialization of operation intent into a signing payload."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any, Literal

from didsign.core.exceptions import EncodingError, ValidationError


def _sort_members(value: Any) -> Any:
    if isinstance(value, Mapping):
        for key in value:
            if not isinstance(key, str):
                raise EncodingError("Member names must be strings", field="key", value=key)
        return {key: _sort_members(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [_sort_members(item) for item in value]
    return value


def canonicalize(value: Any) -> str:
    """Serialize ``value`` so that member order never affects the output.

    Mappings are emitted with their member names sorted lexicographically,
    at every depth. Sequences keep their order and scalars pass through
    unchanged. The result is compact JSON, identical to what a JavaScript
    client gets from ``JSON.stringify`` on a key-sorted object.

    Raises:
        EncodingError: If a mapping has a non-string member name or a value
            has no JSON representation.
    """
    try:
        return json.dumps(
            _sort_members(value),
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as exc:
        raise EncodingError(f"Value cannot be canonicalized: {exc}") from exc


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def build_signing_payload(
    did: str,
    operation_type: str,
    operation_data: Any,
    *,
    mode: Literal["hash", "canonical"] = "hash",
    salt: str | int | None = None,
) -> tuple[str, str]:
    """Derive the message and signing payload for an operation.

    The canonical message covers ``did``, ``operationType`` and
    ``operationData``. In ``hash`` mode the payload is the hex SHA-256 of
    ``"<canonical>:<salt>"`` (the salt is normally a millisecond timestamp, so
    two identical requests get distinct payloads); in ``canonical`` mode the
    payload is the canonical message itself.

    Returns:
        Tuple of (canonical_message, signing_payload).
    """
    message = canonicalize(
        {"did": did, "operationType": operation_type, "operationData": operation_data}
    )
    if mode == "canonical":
        return message, message
    if mode == "hash":
        material = message if salt is None else f"{message}:{salt}"
        return message, sha256_hex(material)
    raise ValidationError(f"Unknown payload mode: {mode}", field="mode", value=mode)
