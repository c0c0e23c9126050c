"""Self-updating countdown messages."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Final

from .durations import HOUR_MS, MINUTE_MS, SECOND_MS, parse_countdown_duration
from .errors import (
    ChannelUnavailableError,
    CountdownExistsError,
    DropBotError,
    InvalidSetupError,
    MessagingError,
    PersistenceError,
)
from .models import CountdownEntry, now_ms
from .storage import DropStorage
from .timers import DeferredTimer

if TYPE_CHECKING:  # pragma: no cover
    from .messaging import Messenger

log = logging.getLogger(__name__)

DEFAULT_UPDATE_INTERVAL_MS: Final[int] = 5 * SECOND_MS
RELAXED_UPDATE_INTERVAL_MS: Final[int] = MINUTE_MS
RELAXED_THRESHOLD_MS: Final[int] = HOUR_MS


def next_tick_delay(remaining_ms: int, base_interval_ms: int) -> int:
    """Delay before the next re-render; never overshoots the deadline."""
    if remaining_ms <= 0:
        return 0
    interval = base_interval_ms
    if remaining_ms > RELAXED_THRESHOLD_MS:
        interval = max(base_interval_ms, RELAXED_UPDATE_INTERVAL_MS)
    return min(interval, remaining_ms)


class CountdownState(enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    BROKEN = "broken"
    CANCELLED = "cancelled"


class CountdownUpdater:
    def __init__(
        self,
        entry: CountdownEntry,
        *,
        storage: DropStorage,
        messenger: Messenger,
        clock: Callable[[], int] = now_ms,
        on_finished: Callable[[CountdownUpdater], None] | None = None,
    ) -> None:
        self.entry = entry
        self.state = CountdownState.ACTIVE
        self._storage = storage
        self._messenger = messenger
        self._clock = clock
        self._on_finished = on_finished
        self._timer = DeferredTimer(f"countdown:{entry.message_id}", self.tick, clock=clock)

    @property
    def timer(self) -> DeferredTimer:
        return self._timer

    def start(self) -> None:
        remaining = self.entry.remaining_ms(self._clock())
        self._timer.arm(next_tick_delay(remaining, self.entry.update_interval_ms))

    def cancel(self) -> None:
        self._timer.cancel()
        if self.state is CountdownState.ACTIVE:
            self.state = CountdownState.CANCELLED

    async def tick(self) -> None:
        if self.state is not CountdownState.ACTIVE:
            return
        now = self._clock()
        remaining = self.entry.remaining_ms(now)
        try:
            await self._messenger.edit_countdown(self.entry, now)
        except (ChannelUnavailableError, MessagingError) as exc:
            log.warning(
                "Countdown %s in channel %s can no longer be updated: %s",
                self.entry.message_id,
                self.entry.channel_id,
                exc,
            )
            self._finish(CountdownState.BROKEN)
            return
        except Exception:  # pylint: disable=broad-except
            log.exception("Countdown %s failed to render", self.entry.message_id)
            self._finish(CountdownState.BROKEN)
            return

        if remaining <= 0:
            log.info(
                "Countdown %s in channel %s finished",
                self.entry.message_id,
                self.entry.channel_id,
            )
            self._finish(CountdownState.COMPLETED)
            return
        self._timer.arm(next_tick_delay(remaining, self.entry.update_interval_ms))

    def _finish(self, state: CountdownState) -> None:
        self._timer.cancel()
        self.state = state
        try:
            self._storage.delete_countdown(self.entry.channel_id, self.entry.message_id)
        except PersistenceError:
            log.exception("Failed to delete countdown %s", self.entry.message_id)
        if self._on_finished is not None:
            self._on_finished(self)


class CountdownService:
    """Creates countdowns and keeps exactly one updater per message."""

    def __init__(
        self,
        storage: DropStorage,
        messenger: Messenger,
        *,
        clock: Callable[[], int] = now_ms,
        update_interval_ms: int = DEFAULT_UPDATE_INTERVAL_MS,
    ) -> None:
        self._storage = storage
        self._messenger = messenger
        self._clock = clock
        self._update_interval_ms = update_interval_ms
        self._updaters: dict[int, CountdownUpdater] = {}
        # Channels with a countdown being posted right now.
        self._pending_channels: set[int] = set()

    def updater_for(self, message_id: int) -> CountdownUpdater | None:
        return self._updaters.get(message_id)

    @property
    def active_count(self) -> int:
        return len(self._updaters)

    async def create(
        self, guild_id: int, channel_id: int, title: str, duration_text: str
    ) -> CountdownEntry:
        duration_ms = parse_countdown_duration(duration_text)
        title = title.strip()
        if not title:
            raise InvalidSetupError("A countdown needs a title.")
        posting = channel_id in self._pending_channels
        if posting or self._storage.list_channel_countdowns(channel_id):
            raise CountdownExistsError(
                f"A countdown is already active in <#{channel_id}>."
            )

        self._pending_channels.add(channel_id)
        try:
            entry = await self._post(guild_id, channel_id, title, duration_ms)
        finally:
            self._pending_channels.discard(channel_id)
        self._start(entry)
        log.info(
            "Countdown %s started in channel %s, ends at %s",
            entry.message_id,
            channel_id,
            entry.end_timestamp,
        )
        return entry

    async def _post(
        self, guild_id: int, channel_id: int, title: str, duration_ms: int
    ) -> CountdownEntry:
        now = self._clock()
        end_timestamp = now + duration_ms
        message_id = await self._messenger.post_countdown(
            channel_id, title, end_timestamp, now
        )
        entry = CountdownEntry(
            guild_id=guild_id,
            channel_id=channel_id,
            message_id=message_id,
            title=title,
            end_timestamp=end_timestamp,
            update_interval_ms=self._update_interval_ms,
            created_at=now,
        )
        try:
            self._storage.save_countdown(entry)
        except PersistenceError:
            log.exception("Failed to save countdown %s; removing message", message_id)
            try:
                await self._messenger.delete_message(channel_id, message_id)
            except DropBotError as exc:
                log.warning("Failed to delete orphaned countdown %s: %s", message_id, exc)
            raise
        return entry

    async def cancel(self, channel_id: int) -> int:
        entries = self._storage.list_channel_countdowns(channel_id)
        for entry in entries:
            self._stop(entry.message_id)
            self._storage.delete_countdown(entry.channel_id, entry.message_id)
        return len(entries)

    def forget(self, channel_id: int, message_id: int) -> bool:
        """Drop a countdown whose message was deleted."""
        stopped = self._stop(message_id)
        try:
            self._storage.delete_countdown(channel_id, message_id)
        except PersistenceError:
            log.exception("Failed to delete countdown %s", message_id)
        return stopped

    async def resume_all(self) -> int:
        try:
            entries = self._storage.list_countdowns()
        except PersistenceError:
            log.exception("Failed to load countdowns")
            return 0

        now = self._clock()
        resumed = 0
        for entry in entries:
            if entry.end_timestamp <= now:
                log.info("Countdown %s expired while offline; removing", entry.message_id)
                try:
                    self._storage.delete_countdown(entry.channel_id, entry.message_id)
                except PersistenceError:
                    log.exception("Failed to delete countdown %s", entry.message_id)
                continue
            self._start(entry)
            resumed += 1
        if resumed:
            log.info("Resumed %s countdowns", resumed)
        return resumed

    def shutdown(self) -> None:
        for updater in list(self._updaters.values()):
            updater.cancel()
        self._updaters.clear()

    def _start(self, entry: CountdownEntry) -> CountdownUpdater:
        self._stop(entry.message_id)
        updater = CountdownUpdater(
            entry,
            storage=self._storage,
            messenger=self._messenger,
            clock=self._clock,
            on_finished=self._on_finished,
        )
        self._updaters[entry.message_id] = updater
        updater.start()
        return updater

    def _stop(self, message_id: int) -> bool:
        updater = self._updaters.pop(message_id, None)
        if updater is None:
            return False
        updater.cancel()
        return True

    def _on_finished(self, updater: CountdownUpdater) -> None:
        if self._updaters.get(updater.entry.message_id) is updater:
            del self._updaters[updater.entry.message_id]


__all__ = [
    "DEFAULT_UPDATE_INTERVAL_MS",
    "CountdownService",
    "CountdownState",
    "CountdownUpdater",
    "next_tick_delay",
]
