"""Pairing and session models for remote wallet signing."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Returned by extract_account_id when a session advertises no usable account.
# Downstream checks compare against this value to detect unresolved accounts.
UNKNOWN_ACCOUNT_ID = "0.0.0"


@dataclass
class PairingSession:
    """An approved wallet session.

    Attributes:
        topic: Session topic; the key requests are relayed under.
        namespaces: Capability namespaces granted by the wallet, e.g.
            ``{"hedera": {"accounts": [...], "chains": [...], "methods": [...]}}``.
        expiry: When the session stops accepting requests (UTC).
        pairing_topic: Topic of the pairing the session was negotiated over.
        peer_metadata: Wallet-supplied metadata (name, url, icons).
    """

    topic: str
    namespaces: dict[str, dict[str, Any]] = field(default_factory=dict)
    expiry: datetime | None = None
    pairing_topic: str | None = None
    peer_metadata: dict[str, Any] = field(default_factory=dict)

    def _collect(self, key: str) -> list[str]:
        values: list[str] = []
        for namespace in self.namespaces.values():
            values.extend(namespace.get(key) or [])
        return values

    @property
    def accounts(self) -> list[str]:
        return self._collect("accounts")

    @property
    def chains(self) -> list[str]:
        chains = self._collect("chains")
        if chains:
            return chains
        # Wallets may omit chains and only list chain-qualified accounts
        return [":".join(a.split(":")[:2]) for a in self.accounts if a.count(":") >= 2]

    @property
    def methods(self) -> list[str]:
        return self._collect("methods")

    @property
    def events(self) -> list[str]:
        return self._collect("events")

    @property
    def account_id(self) -> str:
        return extract_account_id(self)

    def chain_id(self, default: str) -> str:
        """First chain in the namespace of ``default``, else any chain, else ``default``."""
        namespace = self.namespaces.get(default.split(":", 1)[0]) or {}
        chains = namespace.get("chains") or self.chains
        return chains[0] if chains else default

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expiry is None:
            return False
        return (now or datetime.now(UTC)) >= self.expiry

    @classmethod
    def from_settle(cls, params: dict[str, Any], default_expiry: datetime) -> PairingSession:
        """Build a session from a relay ``session_settle`` payload.

        ``expiry`` is read as UNIX seconds when present.
        """
        expiry = default_expiry
        raw_expiry = params.get("expiry")
        if isinstance(raw_expiry, (int, float)) and raw_expiry > 0:
            expiry = datetime.fromtimestamp(raw_expiry, UTC)
        peer = params.get("peer") or {}
        return cls(
            topic=params["topic"],
            namespaces=params.get("namespaces") or {},
            expiry=expiry,
            pairing_topic=params.get("pairingTopic"),
            peer_metadata=peer.get("metadata", peer) if isinstance(peer, dict) else {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "accountId": self.account_id,
            "accounts": self.accounts,
            "chains": self.chains,
            "methods": self.methods,
            "expiry": self.expiry.isoformat() if self.expiry else None,
            "pairingTopic": self.pairing_topic,
        }


@dataclass
class Pairing:
    """A pending pairing.

    ``uri`` is available immediately (for QR display). ``approval`` is a
    deferred computation: call it and await the result to get the
    :class:`PairingSession` once the wallet approves. It raises
    :class:`~didsign.core.exceptions.PairingTimeoutError` or
    :class:`~didsign.core.exceptions.PairingFailedError` otherwise.
    """

    uri: str
    approval: Callable[[], Awaitable[PairingSession]]
    pairing_topic: str | None = None


def extract_account_id(session: PairingSession) -> str:
    """Return the account id from the session's first namespace-qualified account.

    ``"hedera:testnet:0.0.1234"`` gives ``"0.0.1234"``. Sessions with no
    accounts, or an account that is not ``<protocol>:<network>:<account>``,
    give :data:`UNKNOWN_ACCOUNT_ID`.
    """
    accounts = session.accounts
    if not accounts:
        return UNKNOWN_ACCOUNT_ID
    parts = str(accounts[0]).split(":")
    if len(parts) < 3 or not parts[-1]:
        logger.warning("Malformed session account %r; using %s", accounts[0], UNKNOWN_ACCOUNT_ID)
        return UNKNOWN_ACCOUNT_ID
    return parts[-1]
