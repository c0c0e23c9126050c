from __future__ import annotations

import asyncio
import enum
import logging
import random
from collections.abc import Sequence
from typing import TYPE_CHECKING, Final

from .errors import PersistenceError
from .ledger import RewardLedger
from .models import Claim

if TYPE_CHECKING:  # pragma: no cover
    from .messaging import Messenger

log = logging.getLogger(__name__)

CLAIM_TIMEOUT_SECONDS: Final[float] = 60.0


class ClaimState(enum.Enum):
    OPEN = "open"
    CLAIMED = "claimed"
    EXPIRED = "expired"
    FAILED = "failed"


class ClaimWindow:
    """One mystery box drop waiting for its first taker.

    ``accept`` is the single-winner guard: it runs synchronously, before any
    await, so two button presses handled back to back can never both win.
    The reward is drawn from the catalog snapshot taken when the drop fired.
    """

    def __init__(
        self,
        *,
        guild_id: int,
        channel_id: int,
        rewards: Sequence[str],
        ledger: RewardLedger,
        messenger: Messenger,
        timeout: float = CLAIM_TIMEOUT_SECONDS,
        rng: random.Random | None = None,
    ) -> None:
        if not rewards:
            raise ValueError("A claim window needs at least one reward")
        self.guild_id = guild_id
        self.channel_id = channel_id
        self.rewards: tuple[str, ...] = tuple(rewards)
        self.timeout = timeout
        self.state = ClaimState.OPEN
        self.prompt_id: int | None = None
        self.winner_id: int | None = None
        self.claim: Claim | None = None
        self.dm_delivered = False
        self._ledger = ledger
        self._messenger = messenger
        self._rng = rng or random.Random()
        self._won = asyncio.Event()
        self._settled = asyncio.Event()
        self._claim_task: asyncio.Task[None] | None = None
        self._aborted = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def is_open(self) -> bool:
        return self.state is ClaimState.OPEN and self.winner_id is None

    def accept(self, user_id: int) -> bool:
        """Try to claim the box for ``user_id``; only the first caller wins."""
        if not self.is_open:
            return False
        self.winner_id = user_id
        self._won.set()
        self._claim_task = asyncio.get_running_loop().create_task(
            self._record_claim(user_id), name=f"claim:{self.guild_id}"
        )
        log.info(
            "Mystery box in guild %s accepted by user %s", self.guild_id, user_id
        )
        return True

    def abort(self) -> None:
        """Withdraw the drop: later presses lose and no claim is written."""
        if self._aborted:
            return
        self._aborted = True
        if self.state is ClaimState.OPEN:
            self.state = ClaimState.EXPIRED
            if self.winner_id is None:
                self._settled.set()
        self._won.set()
        log.info("Mystery box in guild %s withdrawn", self.guild_id)

    async def wait_settled(self) -> ClaimState:
        """Wait until the winner's claim has been recorded (or failed)."""
        await self._settled.wait()
        return self.state

    async def _record_claim(self, user_id: int) -> None:
        try:
            if self._aborted:
                log.info(
                    "Mystery box in guild %s withdrawn before claim by user %s",
                    self.guild_id,
                    user_id,
                )
                return
            reward = self._rng.choice(self.rewards)
            try:
                claim = self._ledger.issue(self.guild_id, user_id, reward)
            except PersistenceError:
                log.exception(
                    "Failed to record mystery box claim for user %s in guild %s",
                    user_id,
                    self.guild_id,
                )
                self.state = ClaimState.FAILED
                return

            self.claim = claim
            self.state = ClaimState.CLAIMED
            try:
                self.dm_delivered = await self._messenger.send_claim_receipt(claim)
            except Exception:  # pylint: disable=broad-except
                log.exception("Failed to DM claim %s to user %s", claim.claim_id, user_id)
                self.dm_delivered = False
            if not self.dm_delivered:
                log.warning(
                    "Could not DM claim %s to user %s; falling back to channel notice",
                    claim.claim_id,
                    user_id,
                )
        finally:
            self._settled.set()

    async def run(self) -> ClaimState:
        """Post the prompt and wait for a winner or the timeout."""
        self.prompt_id = await self._messenger.open_claim_prompt(self.channel_id, self)
        try:
            await asyncio.wait_for(self._won.wait(), timeout=self.timeout)
        except TimeoutError:
            pass

        if self.winner_id is None:
            self.state = ClaimState.EXPIRED
            self._settled.set()
            if not self._aborted:
                log.info("Mystery box in guild %s expired unclaimed", self.guild_id)
        elif self._claim_task is not None:
            await self._claim_task

        try:
            await self._messenger.close_claim_prompt(self.channel_id, self.prompt_id, self)
        except Exception:  # pylint: disable=broad-except
            log.exception(
                "Failed to close mystery box prompt %s in guild %s",
                self.prompt_id,
                self.guild_id,
            )
        return self.state


__all__ = ["CLAIM_TIMEOUT_SECONDS", "ClaimState", "ClaimWindow"]
