"""Challenge/response authentication of DID holders.

A client asks for a challenge, signs it with the DID's key and submits the
signature. A verified challenge is bound to the DID that answered it.

    service = ChallengeService(registry, SignatureVerifier())
    challenge, expires_at = await service.create_challenge()
    ok = await service.verify(did, challenge, signature)
"""

from __future__ import annotations

import logging
import secrets
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from didsign.core.config import CoreSettings, get_config
from didsign.crypto.verifier import SignatureVerifier
from didsign.identity.registry import DIDRegistry

logger = logging.getLogger(__name__)

CHALLENGE_BYTES = 16


@dataclass
class Challenge:
    """A pending or answered challenge."""

    challenge: str
    expires_at: datetime
    did: str | None = None


class ChallengeStore(ABC):
    """Abstract interface for challenge storage, keyed by challenge string."""

    @abstractmethod
    def store_challenge(self, challenge: Challenge) -> None: ...

    @abstractmethod
    def get_challenge(self, challenge: str) -> Challenge | None: ...

    @abstractmethod
    def bind_did(self, challenge: str, did: str) -> None: ...

    @abstractmethod
    def cleanup_expired(self, now: datetime) -> int:
        """Remove expired challenges.

        Returns:
            Number of challenges removed.
        """
        ...


class MemoryChallengeStore(ChallengeStore):
    """In-memory challenge store.

    Suitable for development and single-process deployments.
    Challenges are lost on restart.
    """

    def __init__(self) -> None:
        self._challenges: dict[str, Challenge] = {}

    def store_challenge(self, challenge: Challenge) -> None:
        self._challenges[challenge.challenge] = challenge

    def get_challenge(self, challenge: str) -> Challenge | None:
        return self._challenges.get(challenge)

    def bind_did(self, challenge: str, did: str) -> None:
        entry = self._challenges.get(challenge)
        if entry is not None:
            entry.did = did

    def cleanup_expired(self, now: datetime) -> int:
        expired = [key for key, entry in self._challenges.items() if now > entry.expires_at]
        for key in expired:
            del self._challenges[key]
        return len(expired)

    def __contains__(self, challenge: str) -> bool:
        return challenge in self._challenges

    def __len__(self) -> int:
        return len(self._challenges)


class ChallengeService:
    """Issue challenges and verify DID holders' signatures over them."""

    def __init__(
        self,
        registry: DIDRegistry,
        verifier: SignatureVerifier | None = None,
        store: ChallengeStore | None = None,
        settings: CoreSettings | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        settings = settings or get_config()
        self.registry = registry
        self.verifier = verifier or SignatureVerifier(settings.signed_message_prefix)
        self.store = store or MemoryChallengeStore()
        self.ttl = settings.challenge_ttl
        self.clock = clock

    async def create_challenge(self) -> tuple[str, datetime]:
        challenge = secrets.token_hex(CHALLENGE_BYTES)
        expires_at = self.clock() + self.ttl
        self.store.store_challenge(Challenge(challenge=challenge, expires_at=expires_at))
        return challenge, expires_at

    async def verify(self, did: str, challenge: str, signature: str) -> bool:
        """Check that ``did``'s key signed ``challenge``.

        Unknown or expired challenges, unknown DIDs and bad signatures all
        give ``False``.
        """
        entry = self.store.get_challenge(challenge)
        if entry is None or self.clock() > entry.expires_at:
            logger.info("Challenge verification for %s rejected: unknown or expired challenge", did)
            return False

        record = await self.registry.find_by_did(did)
        if record is None:
            logger.info("Challenge verification rejected: unknown DID %s", did)
            return False

        if not self.verifier.is_valid(record.public_key, challenge, signature):
            logger.warning("Challenge signature from %s did not verify", did)
            return False

        self.store.bind_did(challenge, did)
        logger.info("Challenge answered by %s", did)
        return True

    async def cleanup_expired(self) -> int:
        removed = self.store.cleanup_expired(self.clock())
        if removed:
            logger.info("Removed %d expired challenge(s)", removed)
        return removed
