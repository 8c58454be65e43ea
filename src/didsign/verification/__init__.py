"""Challenge/response authentication for DID holders."""

from didsign.verification.challenges import (
    Challenge,
    ChallengeService,
    ChallengeStore,
    MemoryChallengeStore,
)

__all__ = ["Challenge", "ChallengeService", "ChallengeStore", "MemoryChallengeStore"]
