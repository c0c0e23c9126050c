"""Recurring mystery box drops, one persisted timer per guild."""

from __future__ import annotations

import enum
import logging
import random
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Final

from .claims import CLAIM_TIMEOUT_SECONDS, ClaimWindow
from .durations import DROP_MINIMUM_MS, humanize_duration
from .errors import (
    AlreadyRunningError,
    ChannelUnavailableError,
    InvalidDurationError,
    MessagingError,
    NotConfiguredError,
    NotRunningError,
    PersistenceError,
)
from .ledger import RewardLedger
from .models import Claim, ScheduleConfig, now_ms
from .storage import DropStorage
from .timers import DeferredTimer

if TYPE_CHECKING:  # pragma: no cover
    from .messaging import Messenger

log = logging.getLogger(__name__)

# Overdue schedules fire this long after a restart instead of replaying backlog.
RESUME_FLOOR_MS: Final[int] = 1000

EMPTY_CATALOG_NOTICE: Final[str] = (
    "⚠️ The mystery box drop failed! No rewards have been configured yet. "
    "Use `/mysterybox setup` to add rewards."
)


class ScheduleState(enum.Enum):
    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    ARMED = "armed"
    FIRING = "firing"


class DropScheduler:
    def __init__(
        self,
        guild_id: int,
        *,
        storage: DropStorage,
        ledger: RewardLedger,
        messenger: Messenger,
        clock: Callable[[], int] = now_ms,
        claim_timeout: float = CLAIM_TIMEOUT_SECONDS,
        window_factory: Callable[..., ClaimWindow] = ClaimWindow,
        rng: random.Random | None = None,
    ) -> None:
        self.guild_id = guild_id
        self._storage = storage
        self._ledger = ledger
        self._messenger = messenger
        self._clock = clock
        self._claim_timeout = claim_timeout
        self._window_factory = window_factory
        self._rng = rng
        self._timer = DeferredTimer(f"mysterybox:{guild_id}", self.fire, clock=clock)
        self._firing = False
        # Cached so a drop can still re-arm while the table is unreachable.
        self._interval_ms: int | None = None
        # Bumped by setup and reset; a drop only re-arms the setup it fired for.
        self._generation = 0
        self.last_window: ClaimWindow | None = None

    @property
    def timer(self) -> DeferredTimer:
        return self._timer

    def state(self) -> ScheduleState:
        if self._firing:
            return ScheduleState.FIRING
        config = self._storage.get_schedule(self.guild_id)
        if config is None:
            return ScheduleState.UNCONFIGURED
        if not config.is_started:
            return ScheduleState.CONFIGURED
        return ScheduleState.ARMED

    async def configure(
        self, channel_id: int, interval_ms: int, rewards: Iterable[str]
    ) -> ScheduleConfig:
        """Store a new setup; the schedule stays idle until ``start``."""
        if interval_ms < DROP_MINIMUM_MS:
            raise InvalidDurationError(
                f"Drop interval must be at least {humanize_duration(DROP_MINIMUM_MS)}."
            )
        self._ledger.replace_catalog(self.guild_id, rewards)
        config = ScheduleConfig(
            guild_id=self.guild_id,
            channel_id=channel_id,
            interval_ms=interval_ms,
            next_fire_at=None,
            updated_at=self._clock(),
        )
        self._storage.save_schedule(config)
        self._timer.cancel()
        self._generation += 1
        self._interval_ms = interval_ms
        log.info(
            "Mystery box configured for guild %s: channel %s every %s ms",
            self.guild_id,
            channel_id,
            interval_ms,
        )
        return config

    async def start(self) -> ScheduleConfig:
        config = self._storage.get_schedule(self.guild_id)
        if config is None:
            raise NotConfiguredError("Setup incomplete. Run `/mysterybox setup` first.")
        now = self._clock()
        if config.next_fire_at is not None:
            raise AlreadyRunningError(
                "Timer already running! Next drop in "
                f"{humanize_duration(config.next_fire_at - now)}."
            )

        next_fire_at = now + config.interval_ms
        if not self._storage.set_next_fire(
            self.guild_id, next_fire_at, updated_at=now
        ):
            raise NotConfiguredError("Setup incomplete. Run `/mysterybox setup` first.")
        self._interval_ms = config.interval_ms
        self._timer.arm(config.interval_ms)
        log.info(
            "Mystery box started for guild %s; first drop at %s",
            self.guild_id,
            next_fire_at,
        )
        return config.with_next_fire(next_fire_at)

    async def resume(self) -> bool:
        """Re-arm from the persisted next drop time after a restart."""
        config = self._storage.get_schedule(self.guild_id)
        if config is None or config.next_fire_at is None:
            return False
        self._interval_ms = config.interval_ms
        delay = max(config.next_fire_at - self._clock(), RESUME_FLOOR_MS)
        self._timer.arm(delay)
        log.info(
            "Mystery box for guild %s resumed; next drop in %s",
            self.guild_id,
            humanize_duration(delay),
        )
        return True

    async def reset(self) -> None:
        self._timer.cancel()
        self._generation += 1
        self._interval_ms = None
        if self.last_window is not None:
            self.last_window.abort()
        self._storage.delete_schedule(self.guild_id)
        self._ledger.purge_tenant(self.guild_id)
        log.info("Mystery box for guild %s reset", self.guild_id)

    def time_until_next_drop(self) -> int:
        config = self._storage.get_schedule(self.guild_id)
        if config is None or config.next_fire_at is None:
            raise NotRunningError("Timer not running.")
        return max(config.next_fire_at - self._clock(), 0)

    def shutdown(self) -> None:
        self._timer.cancel()

    async def fire(self) -> None:
        self._timer.cancel()
        if self._firing:
            log.warning("Mystery box drop for guild %s already in progress", self.guild_id)
            return

        self._firing = True
        generation = self._generation
        rearm = True
        try:
            rearm = await self._drop()
        except Exception:  # pylint: disable=broad-except
            log.exception("Mystery box drop failed for guild %s", self.guild_id)
        finally:
            self._firing = False

        if generation != self._generation:
            log.info(
                "Drop for guild %s: configuration changed during drop, not re-arming",
                self.guild_id,
            )
            return
        if rearm:
            self._rearm()

    async def _drop(self) -> bool:
        """Run one drop; returns whether the schedule should continue."""
        try:
            config = self._storage.get_schedule(self.guild_id)
        except PersistenceError:
            log.exception("Drop for guild %s: failed to load schedule", self.guild_id)
            return True
        if config is None or not config.is_started:
            log.info("Drop for guild %s skipped: schedule no longer active", self.guild_id)
            return False
        self._interval_ms = config.interval_ms

        try:
            rewards = self._ledger.list_rewards(self.guild_id)
        except PersistenceError:
            log.exception("Drop for guild %s: failed to load rewards", self.guild_id)
            return True

        if not rewards:
            log.warning("Drop for guild %s skipped: reward catalog is empty", self.guild_id)
            try:
                await self._messenger.send_message(config.channel_id, EMPTY_CATALOG_NOTICE)
            except ChannelUnavailableError:
                self._forget_channel(config)
                return False
            except MessagingError as exc:
                log.warning(
                    "Drop for guild %s: failed to post empty catalog notice: %s",
                    self.guild_id,
                    exc,
                )
            return True

        window = self._window_factory(
            guild_id=self.guild_id,
            channel_id=config.channel_id,
            rewards=rewards,
            ledger=self._ledger,
            messenger=self._messenger,
            timeout=self._claim_timeout,
            rng=self._rng,
        )
        self.last_window = window
        try:
            outcome = await window.run()
        except ChannelUnavailableError:
            self._forget_channel(config)
            return False
        except MessagingError as exc:
            log.warning(
                "Drop for guild %s: failed to post prompt in channel %s: %s",
                self.guild_id,
                config.channel_id,
                exc,
            )
            return True
        log.info("Drop for guild %s finished: %s", self.guild_id, outcome.value)
        return True

    def _forget_channel(self, config: ScheduleConfig) -> None:
        log.error(
            "Drop for guild %s: channel %s is unavailable; clearing schedule",
            self.guild_id,
            config.channel_id,
        )
        self._interval_ms = None
        try:
            self._storage.delete_schedule(self.guild_id)
        except PersistenceError:
            log.exception("Failed to clear schedule for guild %s", self.guild_id)

    def _rearm(self) -> None:
        interval_ms = self._interval_ms
        if interval_ms is None:
            log.info("Drop for guild %s: schedule was removed, not re-arming", self.guild_id)
            return
        now = self._clock()
        next_fire_at = now + interval_ms
        try:
            still_scheduled = self._storage.set_next_fire(
                self.guild_id, next_fire_at, updated_at=now
            )
        except PersistenceError:
            log.exception(
                "Drop for guild %s: failed to persist next drop; re-arming in memory",
                self.guild_id,
            )
            still_scheduled = True
        if not still_scheduled:
            log.info("Drop for guild %s: schedule was removed, not re-arming", self.guild_id)
            return
        self._timer.arm(interval_ms)
        log.info(
            "Drop for guild %s: next drop in %s",
            self.guild_id,
            humanize_duration(interval_ms),
        )


class MysteryBoxService:
    """Owns one :class:`DropScheduler` per guild."""

    def __init__(
        self,
        storage: DropStorage,
        ledger: RewardLedger,
        messenger: Messenger,
        *,
        clock: Callable[[], int] = now_ms,
        claim_timeout: float = CLAIM_TIMEOUT_SECONDS,
        window_factory: Callable[..., ClaimWindow] = ClaimWindow,
    ) -> None:
        self._storage = storage
        self._ledger = ledger
        self._messenger = messenger
        self._clock = clock
        self._claim_timeout = claim_timeout
        self._window_factory = window_factory
        self._schedulers: dict[int, DropScheduler] = {}

    def scheduler_for(self, guild_id: int) -> DropScheduler:
        scheduler = self._schedulers.get(guild_id)
        if scheduler is None:
            scheduler = DropScheduler(
                guild_id,
                storage=self._storage,
                ledger=self._ledger,
                messenger=self._messenger,
                clock=self._clock,
                claim_timeout=self._claim_timeout,
                window_factory=self._window_factory,
            )
            self._schedulers[guild_id] = scheduler
        return scheduler

    async def configure(
        self, guild_id: int, channel_id: int, interval_ms: int, rewards: Iterable[str]
    ) -> ScheduleConfig:
        return await self.scheduler_for(guild_id).configure(
            channel_id, interval_ms, rewards
        )

    async def start(self, guild_id: int) -> ScheduleConfig:
        return await self.scheduler_for(guild_id).start()

    async def reset(self, guild_id: int) -> None:
        await self.scheduler_for(guild_id).reset()

    def time_until_next_drop(self, guild_id: int) -> int:
        return self.scheduler_for(guild_id).time_until_next_drop()

    def list_rewards(self, guild_id: int) -> list[str]:
        return self._ledger.list_rewards(guild_id)

    def list_claims(self, guild_id: int, user_id: int) -> list[Claim]:
        return self._ledger.list_claims(guild_id, user_id)

    def mark_used(self, guild_id: int, user_id: int, claim_id: str) -> Claim:
        return self._ledger.mark_used(guild_id, user_id, claim_id)

    async def resume_all(self) -> int:
        try:
            configs = self._storage.list_schedules()
        except PersistenceError:
            log.exception("Failed to load mystery box schedules")
            return 0

        resumed = 0
        for config in configs:
            try:
                if await self.scheduler_for(config.guild_id).resume():
                    resumed += 1
            except PersistenceError:
                log.exception("Failed to resume mystery box for guild %s", config.guild_id)
        if resumed:
            log.info("Resumed %s mystery box schedules", resumed)
        return resumed

    def shutdown(self) -> None:
        for scheduler in self._schedulers.values():
            scheduler.shutdown()


__all__ = [
    "EMPTY_CATALOG_NOTICE",
    "RESUME_FLOOR_MS",
    "DropScheduler",
    "MysteryBoxService",
    "ScheduleState",
]
