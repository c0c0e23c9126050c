import asyncio
from dataclasses import replace
from unittest.mock import patch

import pytest
import pytest_asyncio
from botocore.exceptions import ClientError
from fakes import CHANNEL_ID, GUILD_ID, FakeClock, FakeMessenger

from dropbot.countdown import (
    DEFAULT_UPDATE_INTERVAL_MS,
    CountdownService,
    CountdownState,
    CountdownUpdater,
    next_tick_delay,
)
from dropbot.durations import HOUR_MS, MINUTE_MS, SECOND_MS
from dropbot.errors import (
    ChannelUnavailableError,
    CountdownExistsError,
    InvalidDurationError,
    InvalidSetupError,
    MessagingError,
    PersistenceError,
)
from dropbot.models import CountdownEntry, now_ms


def sample_entry(clock_now: int, *, remaining_ms: int, message_id: int = 77):
    return CountdownEntry(
        guild_id=GUILD_ID,
        channel_id=CHANNEL_ID,
        message_id=message_id,
        title="Launch",
        end_timestamp=clock_now + remaining_ms,
        update_interval_ms=DEFAULT_UPDATE_INTERVAL_MS,
        created_at=clock_now,
    )


def test_next_tick_delay_never_overshoots() -> None:
    assert next_tick_delay(60 * SECOND_MS, 5 * SECOND_MS) == 5 * SECOND_MS
    assert next_tick_delay(2 * SECOND_MS, 5 * SECOND_MS) == 2 * SECOND_MS
    assert next_tick_delay(0, 5 * SECOND_MS) == 0
    assert next_tick_delay(-10, 5 * SECOND_MS) == 0


def test_next_tick_delay_relaxes_far_from_deadline() -> None:
    assert next_tick_delay(2 * HOUR_MS, 5 * SECOND_MS) == MINUTE_MS
    assert next_tick_delay(HOUR_MS, 5 * SECOND_MS) == 5 * SECOND_MS


@pytest_asyncio.fixture()
async def service(storage, messenger, clock):
    instance = CountdownService(storage, messenger, clock=clock)
    yield instance
    instance.shutdown()


@pytest.mark.asyncio
async def test_countdown_renders_until_deadline(
    service: CountdownService, storage, messenger: FakeMessenger, clock: FakeClock
) -> None:
    created_at = clock.now
    entry = await service.create(GUILD_ID, CHANNEL_ID, "  Launch  ", "1m 30s")
    updater = service.updater_for(entry.message_id)

    assert entry.title == "Launch"
    assert entry.end_timestamp == created_at + 90 * SECOND_MS
    assert messenger.countdown_posts == [
        (CHANNEL_ID, "Launch", entry.end_timestamp, created_at)
    ]
    assert storage.get_countdown(CHANNEL_ID, entry.message_id) == entry
    assert updater is not None and updater.timer.is_armed()

    clock.advance(30 * SECOND_MS)
    await updater.tick()
    assert messenger.countdown_edits[-1] == (entry.message_id, clock.now)
    assert updater.timer.delay_ms == DEFAULT_UPDATE_INTERVAL_MS

    clock.advance(58 * SECOND_MS)
    await updater.tick()
    assert updater.timer.delay_ms == 2 * SECOND_MS

    clock.advance(2 * SECOND_MS)
    await updater.tick()

    assert updater.state is CountdownState.COMPLETED
    assert messenger.countdown_edits[-1][1] >= entry.end_timestamp
    assert not updater.timer.is_armed()
    assert storage.get_countdown(CHANNEL_ID, entry.message_id) is None
    assert service.active_count == 0


@pytest.mark.asyncio
async def test_countdown_completes_with_real_timers(storage, messenger) -> None:
    entry = replace(sample_entry(now_ms(), remaining_ms=60), update_interval_ms=20)
    storage.save_countdown(entry)
    finished: list[CountdownUpdater] = []
    updater = CountdownUpdater(
        entry, storage=storage, messenger=messenger, on_finished=finished.append
    )

    updater.start()
    await asyncio.sleep(0.3)

    assert updater.state is CountdownState.COMPLETED
    assert finished == [updater]
    assert len(messenger.countdown_edits) >= 2
    assert storage.get_countdown(CHANNEL_ID, entry.message_id) is None


@pytest.mark.asyncio
async def test_edit_failure_stops_the_countdown(
    service: CountdownService, storage, messenger: FakeMessenger, clock: FakeClock
) -> None:
    entry = await service.create(GUILD_ID, CHANNEL_ID, "Launch", "5m")
    updater = service.updater_for(entry.message_id)
    messenger.edit_error = MessagingError("Unknown Message")

    clock.advance(5 * SECOND_MS)
    await updater.tick()

    assert updater.state is CountdownState.BROKEN
    assert not updater.timer.is_armed()
    assert storage.get_countdown(CHANNEL_ID, entry.message_id) is None
    assert service.updater_for(entry.message_id) is None


@pytest.mark.asyncio
async def test_missing_channel_stops_the_countdown(
    service: CountdownService, storage, messenger: FakeMessenger
) -> None:
    entry = await service.create(GUILD_ID, CHANNEL_ID, "Launch", "5m")
    messenger.unavailable_channels.add(CHANNEL_ID)

    await service.updater_for(entry.message_id).tick()

    assert service.active_count == 0
    assert storage.list_countdowns() == []


@pytest.mark.asyncio
async def test_one_countdown_per_channel(service: CountdownService) -> None:
    await service.create(GUILD_ID, CHANNEL_ID, "Launch", "5m")

    with pytest.raises(CountdownExistsError):
        await service.create(GUILD_ID, CHANNEL_ID, "Another", "10m")

    other = await service.create(GUILD_ID, CHANNEL_ID + 1, "Another", "10m")
    assert service.active_count == 2
    assert service.updater_for(other.message_id) is not None
    service.shutdown()


@pytest.mark.asyncio
async def test_simultaneous_creates_share_one_channel(
    service: CountdownService, messenger: FakeMessenger
) -> None:
    post = messenger.post_countdown

    async def slow_post(*args):
        await asyncio.sleep(0)
        return await post(*args)

    with patch.object(messenger, "post_countdown", side_effect=slow_post):
        results = await asyncio.gather(
            service.create(GUILD_ID, CHANNEL_ID, "Launch", "5m"),
            service.create(GUILD_ID, CHANNEL_ID, "Another", "10m"),
            return_exceptions=True,
        )

    created = [r for r in results if isinstance(r, CountdownEntry)]
    rejected = [r for r in results if isinstance(r, CountdownExistsError)]
    assert len(created) == 1
    assert len(rejected) == 1
    assert len(messenger.countdown_posts) == 1
    assert service.active_count == 1
    service.shutdown()


@pytest.mark.asyncio
async def test_failed_post_frees_the_channel(
    service: CountdownService, messenger: FakeMessenger
) -> None:
    messenger.unavailable_channels.add(CHANNEL_ID)
    with pytest.raises(ChannelUnavailableError):
        await service.create(GUILD_ID, CHANNEL_ID, "Launch", "5m")

    messenger.unavailable_channels.clear()
    entry = await service.create(GUILD_ID, CHANNEL_ID, "Launch", "5m")

    assert service.updater_for(entry.message_id) is not None
    service.shutdown()


@pytest.mark.asyncio
async def test_create_validates_input(service: CountdownService, messenger) -> None:
    with pytest.raises(InvalidDurationError):
        await service.create(GUILD_ID, CHANNEL_ID, "Launch", "30s")
    with pytest.raises(InvalidSetupError):
        await service.create(GUILD_ID, CHANNEL_ID, "   ", "5m")
    assert messenger.countdown_posts == []


@pytest.mark.asyncio
async def test_failed_save_removes_posted_message(
    service: CountdownService, table, messenger: FakeMessenger
) -> None:
    table.failures["put_item"] = ClientError(
        {"Error": {"Code": "InternalServerError", "Message": "table down"}}, "PutItem"
    )

    with pytest.raises(PersistenceError):
        await service.create(GUILD_ID, CHANNEL_ID, "Launch", "5m")

    posted_id = messenger._next_id
    assert messenger.deleted == [(CHANNEL_ID, posted_id)]
    assert service.active_count == 0


@pytest.mark.asyncio
async def test_cancel_stops_channel_countdown(service: CountdownService, storage) -> None:
    entry = await service.create(GUILD_ID, CHANNEL_ID, "Launch", "5m")
    updater = service.updater_for(entry.message_id)

    assert await service.cancel(CHANNEL_ID) == 1
    assert updater.state is CountdownState.CANCELLED
    assert not updater.timer.is_armed()
    assert storage.list_channel_countdowns(CHANNEL_ID) == []
    assert await service.cancel(CHANNEL_ID) == 0


@pytest.mark.asyncio
async def test_forget_deleted_message(service: CountdownService, storage) -> None:
    entry = await service.create(GUILD_ID, CHANNEL_ID, "Launch", "5m")

    assert service.forget(CHANNEL_ID, entry.message_id) is True
    assert service.forget(CHANNEL_ID, entry.message_id) is False
    assert storage.list_countdowns() == []


@pytest.mark.asyncio
async def test_resume_all_restarts_future_and_drops_past(
    service: CountdownService, storage, clock: FakeClock
) -> None:
    storage.save_countdown(sample_entry(clock.now, remaining_ms=HOUR_MS, message_id=1))
    storage.save_countdown(sample_entry(clock.now, remaining_ms=-SECOND_MS, message_id=2))

    assert await service.resume_all() == 1

    assert service.updater_for(1) is not None
    assert service.updater_for(2) is None
    assert [entry.message_id for entry in storage.list_countdowns()] == [1]
    service.shutdown()
    assert service.active_count == 0
