"""Mystery box drops and self-updating countdowns for Discord."""

from .claims import ClaimState, ClaimWindow
from .countdown import CountdownService, CountdownState, CountdownUpdater
from .durations import (
    COUNTDOWN_UNITS,
    DROP_UNITS,
    format_duration,
    humanize_duration,
    parse_countdown_duration,
    parse_drop_interval,
    parse_duration,
)
from .errors import (
    AlreadyRunningError,
    AlreadyUsedError,
    ChannelUnavailableError,
    ClaimNotFoundError,
    ClaimTokenCollisionError,
    CountdownExistsError,
    DropBotError,
    InvalidDurationError,
    InvalidSetupError,
    MessagingError,
    NotConfiguredError,
    NotRunningError,
    PersistenceError,
)
from .ledger import RewardLedger
from .models import Claim, CountdownEntry, RewardEntry, ScheduleConfig, now_ms
from .scheduler import DropScheduler, MysteryBoxService, ScheduleState
from .storage import DropStorage
from .timers import DeferredTimer

__all__ = [
    "COUNTDOWN_UNITS",
    "DROP_UNITS",
    "AlreadyRunningError",
    "AlreadyUsedError",
    "ChannelUnavailableError",
    "Claim",
    "ClaimNotFoundError",
    "ClaimState",
    "ClaimTokenCollisionError",
    "ClaimWindow",
    "CountdownEntry",
    "CountdownExistsError",
    "CountdownService",
    "CountdownState",
    "CountdownUpdater",
    "DeferredTimer",
    "DropBotError",
    "DropScheduler",
    "DropStorage",
    "InvalidDurationError",
    "InvalidSetupError",
    "MessagingError",
    "MysteryBoxService",
    "NotConfiguredError",
    "NotRunningError",
    "PersistenceError",
    "RewardEntry",
    "RewardLedger",
    "ScheduleConfig",
    "ScheduleState",
    "format_duration",
    "humanize_duration",
    "now_ms",
    "parse_countdown_duration",
    "parse_drop_interval",
    "parse_duration",
]
