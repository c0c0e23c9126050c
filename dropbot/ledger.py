from __future__ import annotations

import logging
import random
import string
from collections.abc import Callable, Iterable
from dataclasses import replace
from typing import Final

from .errors import (
    AlreadyUsedError,
    ClaimNotFoundError,
    ClaimTokenCollisionError,
    InvalidSetupError,
    PersistenceError,
)
from .models import Claim, RewardEntry, now_ms
from .storage import DropStorage

log = logging.getLogger(__name__)

CLAIM_ID_LENGTH: Final[int] = 10
CLAIM_ID_ALPHABET: Final[str] = string.ascii_uppercase + string.digits

_system_random = random.SystemRandom()


def generate_claim_id(length: int = CLAIM_ID_LENGTH) -> str:
    return "".join(_system_random.choice(CLAIM_ID_ALPHABET) for _ in range(length))


def normalize_claim_id(raw: str) -> str:
    """Accept ``#ab12cd`` style input and return the stored form."""
    value = raw.strip().lstrip("#").strip().upper()
    if not value:
        raise ClaimNotFoundError("A claim ID is required")
    return value


class RewardLedger:
    """Reward catalog plus the append-only record of issued claims."""

    def __init__(
        self,
        storage: DropStorage,
        *,
        token_factory: Callable[[], str] = generate_claim_id,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._storage = storage
        self._token_factory = token_factory
        self._clock = clock

    # ----- Catalog -----
    def replace_catalog(self, guild_id: int, rewards: Iterable[str]) -> list[RewardEntry]:
        cleaned = [reward.strip() for reward in rewards if reward and reward.strip()]
        if not cleaned:
            raise InvalidSetupError("Enter at least one reward.")
        entries = self._storage.replace_rewards(
            guild_id, cleaned, created_at=self._clock()
        )
        log.info("Reward catalog for guild %s replaced (%s rewards)", guild_id, len(entries))
        return entries

    def list_rewards(self, guild_id: int) -> list[str]:
        return [entry.description for entry in self._storage.list_rewards(guild_id)]

    # ----- Claims -----
    def issue(self, guild_id: int, user_id: int, reward_description: str) -> Claim:
        claim = Claim(
            guild_id=guild_id,
            claim_id=self._token_factory(),
            user_id=user_id,
            reward_description=reward_description,
            claimed_at=self._clock(),
        )
        if not self._storage.put_claim(claim):
            raise ClaimTokenCollisionError(
                f"Claim ID {claim.claim_id} already exists in guild {guild_id}"
            )
        log.info(
            "Issued claim %s to user %s in guild %s", claim.claim_id, user_id, guild_id
        )
        return claim

    def list_claims(self, guild_id: int, user_id: int) -> list[Claim]:
        claims = self._storage.list_claims(guild_id, user_id)
        claims.sort(key=lambda claim: (claim.claimed_at, claim.claim_id), reverse=True)
        return claims

    def mark_used(self, guild_id: int, user_id: int, claim_id: str) -> Claim:
        normalized = normalize_claim_id(claim_id)
        claim = self._storage.get_claim(guild_id, normalized)
        if claim is None or claim.user_id != user_id:
            raise ClaimNotFoundError(f"Claim ID #{normalized} not found.")
        if claim.is_used:
            raise AlreadyUsedError(f"Claim ID #{normalized} is already marked USED.")

        used_at = self._clock()
        if not self._storage.mark_claim_used(guild_id, normalized, used_at=used_at):
            # Lost a race with another redemption, or the claim vanished.
            current = self._storage.get_claim(guild_id, normalized)
            if current is None:
                raise ClaimNotFoundError(f"Claim ID #{normalized} not found.")
            raise AlreadyUsedError(f"Claim ID #{normalized} is already marked USED.")
        log.info("Claim %s in guild %s marked used", normalized, guild_id)
        return replace(claim, is_used=True, used_at=used_at)

    def purge_tenant(self, guild_id: int) -> tuple[int, int]:
        """Delete every claim and catalog entry for the guild."""
        try:
            claims = self._storage.delete_claims(guild_id)
            rewards = self._storage.delete_rewards(guild_id)
        except PersistenceError:
            log.exception("Failed to purge mystery box data for guild %s", guild_id)
            raise
        log.info(
            "Purged %s claims and %s rewards for guild %s", claims, rewards, guild_id
        )
        return claims, rewards


__all__ = [
    "CLAIM_ID_ALPHABET",
    "CLAIM_ID_LENGTH",
    "RewardLedger",
    "generate_claim_id",
    "normalize_claim_id",
]
