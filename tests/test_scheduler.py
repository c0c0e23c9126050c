import asyncio
from unittest.mock import patch

import pytest
import pytest_asyncio
from fakes import CHANNEL_ID, GUILD_ID, FakeClock, FakeMessenger

from dropbot.claims import ClaimState
from dropbot.durations import HOUR_MS, parse_drop_interval
from dropbot.errors import (
    AlreadyRunningError,
    InvalidDurationError,
    InvalidSetupError,
    MessagingError,
    NotConfiguredError,
    NotRunningError,
    PersistenceError,
)
from dropbot.models import ScheduleConfig
from dropbot.scheduler import (
    EMPTY_CATALOG_NOTICE,
    RESUME_FLOOR_MS,
    DropScheduler,
    MysteryBoxService,
    ScheduleState,
)


@pytest_asyncio.fixture()
async def scheduler(storage, ledger, messenger, clock):
    instance = DropScheduler(
        GUILD_ID,
        storage=storage,
        ledger=ledger,
        messenger=messenger,
        clock=clock,
        claim_timeout=0.01,
    )
    yield instance
    instance.shutdown()


async def configured(scheduler: DropScheduler, rewards=("Nitro",)) -> None:
    await scheduler.configure(CHANNEL_ID, parse_drop_interval("1h"), list(rewards))


@pytest.mark.asyncio
async def test_configure_leaves_schedule_idle(scheduler, storage) -> None:
    assert scheduler.state() is ScheduleState.UNCONFIGURED

    await configured(scheduler)

    assert scheduler.state() is ScheduleState.CONFIGURED
    assert not scheduler.timer.is_armed()
    config = storage.get_schedule(GUILD_ID)
    assert config is not None
    assert config.interval_ms == HOUR_MS
    assert config.next_fire_at is None


@pytest.mark.asyncio
async def test_configure_rejects_short_interval(scheduler) -> None:
    with pytest.raises(InvalidDurationError):
        await scheduler.configure(CHANNEL_ID, 500, ["Nitro"])


@pytest.mark.asyncio
async def test_start_requires_setup(scheduler) -> None:
    with pytest.raises(NotConfiguredError):
        await scheduler.start()


@pytest.mark.asyncio
async def test_start_arms_one_interval_ahead(scheduler, storage, clock: FakeClock) -> None:
    await configured(scheduler)
    started_at = clock.now

    config = await scheduler.start()

    assert config.next_fire_at == started_at + HOUR_MS
    assert storage.get_schedule(GUILD_ID).next_fire_at == started_at + HOUR_MS
    assert scheduler.timer.fires_at == started_at + HOUR_MS
    assert scheduler.state() is ScheduleState.ARMED
    assert scheduler.time_until_next_drop() == HOUR_MS

    with pytest.raises(AlreadyRunningError):
        await scheduler.start()


@pytest.mark.asyncio
async def test_time_until_next_drop_requires_running_timer(scheduler) -> None:
    await configured(scheduler)
    with pytest.raises(NotRunningError):
        scheduler.time_until_next_drop()


@pytest.mark.asyncio
async def test_unclaimed_drop_rearms_one_interval_later(
    scheduler, storage, messenger: FakeMessenger, clock: FakeClock
) -> None:
    await configured(scheduler)
    started_at = clock.now
    await scheduler.start()
    clock.advance(HOUR_MS)

    with patch.object(scheduler.timer, "arm", wraps=scheduler.timer.arm) as arm:
        await scheduler.fire()

    assert arm.call_count == 1
    assert scheduler.last_window.state is ClaimState.EXPIRED
    assert len(messenger.prompts) == 1
    assert storage.get_schedule(GUILD_ID).next_fire_at == started_at + 2 * HOUR_MS
    assert scheduler.timer.fires_at == started_at + 2 * HOUR_MS
    assert storage.list_claims(GUILD_ID) == []


@pytest.mark.asyncio
async def test_claimed_drop_records_claim_and_rearms_once(
    scheduler, storage, messenger: FakeMessenger, clock: FakeClock
) -> None:
    await configured(scheduler, rewards=("Nitro", "Coins"))
    await scheduler.start()
    clock.advance(HOUR_MS)
    messenger.on_prompt = lambda window: (window.accept(1), window.accept(2))

    with patch.object(scheduler.timer, "arm", wraps=scheduler.timer.arm) as arm:
        await scheduler.fire()

    assert arm.call_count == 1
    claims = storage.list_claims(GUILD_ID)
    assert len(claims) == 1
    assert claims[0].user_id == 1
    assert scheduler.last_window.state is ClaimState.CLAIMED


@pytest.mark.asyncio
async def test_empty_catalog_posts_notice_and_rearms(
    scheduler, storage, messenger: FakeMessenger
) -> None:
    await configured(scheduler)
    await scheduler.start()
    storage.delete_rewards(GUILD_ID)

    with patch.object(scheduler.timer, "arm", wraps=scheduler.timer.arm) as arm:
        await scheduler.fire()

    assert messenger.sent == [(CHANNEL_ID, EMPTY_CATALOG_NOTICE)]
    assert messenger.prompts == []
    assert arm.call_count == 1


@pytest.mark.asyncio
async def test_unavailable_channel_clears_schedule(
    scheduler, storage, messenger: FakeMessenger
) -> None:
    await configured(scheduler)
    await scheduler.start()
    messenger.unavailable_channels.add(CHANNEL_ID)

    with patch.object(scheduler.timer, "arm", wraps=scheduler.timer.arm) as arm:
        await scheduler.fire()

    assert arm.call_count == 0
    assert not scheduler.timer.is_armed()
    assert storage.get_schedule(GUILD_ID) is None
    assert scheduler.state() is ScheduleState.UNCONFIGURED


@pytest.mark.asyncio
async def test_transient_prompt_failure_still_rearms(
    scheduler, messenger: FakeMessenger
) -> None:
    await configured(scheduler)
    await scheduler.start()
    messenger.prompt_error = MessagingError("503")

    with patch.object(scheduler.timer, "arm", wraps=scheduler.timer.arm) as arm:
        await scheduler.fire()

    assert arm.call_count == 1
    assert scheduler.timer.is_armed()


@pytest.mark.asyncio
async def test_reward_load_failure_still_rearms(scheduler, ledger, messenger) -> None:
    await configured(scheduler)
    await scheduler.start()

    with (
        patch.object(ledger, "list_rewards", side_effect=PersistenceError("down")),
        patch.object(scheduler.timer, "arm", wraps=scheduler.timer.arm) as arm,
    ):
        await scheduler.fire()

    assert arm.call_count == 1
    assert messenger.prompts == []


@pytest.mark.asyncio
async def test_rearm_survives_unwritable_table(
    scheduler, storage, clock: FakeClock
) -> None:
    await configured(scheduler)
    await scheduler.start()
    clock.advance(HOUR_MS)

    with patch.object(storage, "set_next_fire", side_effect=PersistenceError("down")):
        await scheduler.fire()

    assert scheduler.timer.is_armed()
    assert scheduler.timer.fires_at == clock.now + HOUR_MS


@pytest.mark.asyncio
async def test_reset_during_drop_stops_rearming(
    scheduler, storage, ledger, messenger: FakeMessenger
) -> None:
    await configured(scheduler)
    await scheduler.start()
    scheduler.shutdown()
    resets: list[asyncio.Task] = []
    messenger.on_prompt = lambda window: resets.append(
        asyncio.create_task(scheduler.reset())
    )

    await scheduler.fire()
    await asyncio.gather(*resets)

    assert not scheduler.timer.is_armed()
    assert storage.get_schedule(GUILD_ID) is None
    assert ledger.list_rewards(GUILD_ID) == []


@pytest.mark.asyncio
async def test_reset_during_drop_withdraws_the_box(
    scheduler, storage, ledger, messenger: FakeMessenger
) -> None:
    await configured(scheduler)
    await scheduler.start()
    scheduler.shutdown()
    presses: list[bool] = []

    async def reset_then_press(window) -> None:
        await scheduler.reset()
        presses.append(window.accept(7))

    tasks: list[asyncio.Task] = []
    messenger.on_prompt = lambda window: tasks.append(
        asyncio.create_task(reset_then_press(window))
    )

    await scheduler.fire()
    await asyncio.gather(*tasks)

    assert presses == [False]
    assert scheduler.last_window.state is ClaimState.EXPIRED
    assert ledger.list_claims(GUILD_ID, 7) == []
    assert messenger.closed[-1][2] is ClaimState.EXPIRED
    assert storage.get_schedule(GUILD_ID) is None


@pytest.mark.asyncio
async def test_setup_during_drop_is_not_started(
    scheduler, storage, messenger: FakeMessenger
) -> None:
    await configured(scheduler)
    await scheduler.start()
    scheduler.shutdown()
    setups: list[asyncio.Task] = []
    messenger.on_prompt = lambda window: setups.append(
        asyncio.create_task(scheduler.configure(CHANNEL_ID, 2 * HOUR_MS, ["VIP"]))
    )

    await scheduler.fire()
    await asyncio.gather(*setups)

    assert scheduler.state() is ScheduleState.CONFIGURED
    assert storage.get_schedule(GUILD_ID).next_fire_at is None
    assert storage.get_schedule(GUILD_ID).interval_ms == 2 * HOUR_MS
    assert not scheduler.timer.is_armed()

    await scheduler.start()
    assert scheduler.timer.delay_ms == 2 * HOUR_MS


@pytest.mark.asyncio
async def test_reset_and_setup_during_drop_is_not_started(
    scheduler, storage, ledger, messenger: FakeMessenger
) -> None:
    await configured(scheduler)
    await scheduler.start()
    scheduler.shutdown()

    async def reset_then_setup() -> None:
        await scheduler.reset()
        await scheduler.configure(CHANNEL_ID, 2 * HOUR_MS, ["VIP"])

    tasks: list[asyncio.Task] = []
    messenger.on_prompt = lambda window: tasks.append(
        asyncio.create_task(reset_then_setup())
    )

    await scheduler.fire()
    await asyncio.gather(*tasks)

    assert scheduler.state() is ScheduleState.CONFIGURED
    assert storage.get_schedule(GUILD_ID).next_fire_at is None
    assert ledger.list_rewards(GUILD_ID) == ["VIP"]
    assert not scheduler.timer.is_armed()


@pytest.mark.asyncio
async def test_failed_setup_during_drop_keeps_schedule_running(
    scheduler, storage, messenger: FakeMessenger, clock: FakeClock
) -> None:
    await configured(scheduler)
    await scheduler.start()
    scheduler.shutdown()
    errors: list[BaseException] = []

    async def bad_setup() -> None:
        try:
            await scheduler.configure(CHANNEL_ID, 2 * HOUR_MS, ["   "])
        except InvalidSetupError as exc:
            errors.append(exc)

    tasks: list[asyncio.Task] = []
    messenger.on_prompt = lambda window: tasks.append(asyncio.create_task(bad_setup()))

    await scheduler.fire()
    await asyncio.gather(*tasks)

    assert len(errors) == 1
    assert scheduler.timer.is_armed()
    assert storage.get_schedule(GUILD_ID).next_fire_at == clock.now + HOUR_MS


@pytest.mark.asyncio
async def test_fire_after_reset_is_a_no_op(scheduler, messenger) -> None:
    await configured(scheduler)
    await scheduler.start()
    await scheduler.reset()

    await scheduler.fire()

    assert messenger.prompts == []
    assert not scheduler.timer.is_armed()


@pytest.mark.asyncio
async def test_concurrent_fire_is_ignored(scheduler, messenger: FakeMessenger) -> None:
    await configured(scheduler)
    await scheduler.start()
    nested: list[asyncio.Task] = []
    messenger.on_prompt = lambda window: nested.append(
        asyncio.create_task(scheduler.fire())
    )

    await scheduler.fire()
    await asyncio.gather(*nested)

    assert len(messenger.prompts) == 1


@pytest.mark.asyncio
async def test_resume_uses_persisted_deadline(scheduler, storage, clock: FakeClock) -> None:
    storage.save_schedule(
        ScheduleConfig(
            guild_id=GUILD_ID,
            channel_id=CHANNEL_ID,
            interval_ms=HOUR_MS,
            next_fire_at=clock.now + 10 * 60_000,
        )
    )

    assert await scheduler.resume() is True
    assert scheduler.timer.delay_ms == 10 * 60_000


@pytest.mark.asyncio
async def test_resume_overdue_schedule_fires_soon(
    scheduler, storage, clock: FakeClock
) -> None:
    storage.save_schedule(
        ScheduleConfig(
            guild_id=GUILD_ID,
            channel_id=CHANNEL_ID,
            interval_ms=HOUR_MS,
            next_fire_at=clock.now - 5 * HOUR_MS,
        )
    )

    assert await scheduler.resume() is True
    assert scheduler.timer.delay_ms == RESUME_FLOOR_MS


@pytest.mark.asyncio
async def test_resume_ignores_stopped_schedule(scheduler, storage) -> None:
    storage.save_schedule(
        ScheduleConfig(guild_id=GUILD_ID, channel_id=CHANNEL_ID, interval_ms=HOUR_MS)
    )

    assert await scheduler.resume() is False
    assert not scheduler.timer.is_armed()


@pytest.mark.asyncio
async def test_service_resumes_every_started_guild(storage, ledger, messenger, clock) -> None:
    for guild_id, next_fire_at in ((1, clock.now + 1_000), (2, None), (3, clock.now)):
        storage.save_schedule(
            ScheduleConfig(
                guild_id=guild_id,
                channel_id=10,
                interval_ms=HOUR_MS,
                next_fire_at=next_fire_at,
            )
        )
    service = MysteryBoxService(storage, ledger, messenger, clock=clock)

    try:
        assert await service.resume_all() == 2
        assert service.scheduler_for(1).timer.is_armed()
        assert not service.scheduler_for(2).timer.is_armed()
        assert service.scheduler_for(3).timer.is_armed()
    finally:
        service.shutdown()


@pytest.mark.asyncio
async def test_service_keeps_guilds_apart(storage, ledger, messenger, clock) -> None:
    service = MysteryBoxService(storage, ledger, messenger, clock=clock)
    try:
        await service.configure(1, 10, HOUR_MS, ["Nitro"])
        await service.configure(2, 20, 2 * HOUR_MS, ["Coins"])
        await service.start(1)

        assert service.time_until_next_drop(1) == HOUR_MS
        with pytest.raises(NotRunningError):
            service.time_until_next_drop(2)
        assert service.list_rewards(2) == ["Coins"]

        await service.reset(1)
        assert service.list_rewards(1) == []
        assert service.list_rewards(2) == ["Coins"]
    finally:
        service.shutdown()


@pytest.mark.asyncio
async def test_schedule_deleted_elsewhere_is_not_recreated(
    scheduler, storage, table, messenger: FakeMessenger
) -> None:
    await configured(scheduler)
    await scheduler.start()
    messenger.on_prompt = lambda window: storage.delete_schedule(GUILD_ID)

    await scheduler.fire()

    assert not scheduler.timer.is_armed()
    assert ("GUILD#42", "MYSTERYBOX") not in table.items
