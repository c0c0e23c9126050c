from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import ClassVar

# Bumped whenever the pk/sk layout below changes.
SCHEMA_VERSION = 1


def now_ms() -> int:
    """Return the current Unix time in milliseconds."""
    return int(datetime.now(UTC).timestamp() * 1000)


def ms_to_datetime(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def _optional_int(value: object) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _as_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


def _tail(value: object) -> str:
    return str(value).split("#", 1)[1]


@dataclass(slots=True)
class ScheduleConfig:
    guild_id: int
    channel_id: int
    interval_ms: int
    next_fire_at: int | None = None
    updated_at: int = 0

    PK_TEMPLATE: ClassVar[str] = "GUILD#%s"
    SK_VALUE: ClassVar[str] = "MYSTERYBOX"

    @classmethod
    def key(cls, guild_id: int) -> dict[str, str]:
        return {"pk": cls.PK_TEMPLATE % guild_id, "sk": cls.SK_VALUE}

    @property
    def is_started(self) -> bool:
        return self.next_fire_at is not None

    def with_next_fire(self, next_fire_at: int | None) -> ScheduleConfig:
        return replace(self, next_fire_at=next_fire_at)

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.guild_id)
        item.update(
            {
                "channel_id": str(self.channel_id),
                "interval_ms": int(self.interval_ms),
                "updated_at": int(self.updated_at),
                "schema_version": SCHEMA_VERSION,
            }
        )
        if self.next_fire_at is not None:
            item["next_fire_at"] = int(self.next_fire_at)
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> ScheduleConfig:
        return cls(
            guild_id=int(_tail(item["pk"])),
            channel_id=int(str(item["channel_id"])),
            interval_ms=int(item["interval_ms"]),  # type: ignore[arg-type]
            next_fire_at=_optional_int(item.get("next_fire_at")),
            updated_at=_optional_int(item.get("updated_at")) or 0,
        )


@dataclass(slots=True)
class RewardEntry:
    guild_id: int
    entry_id: str
    description: str
    created_at: int = 0

    PK_TEMPLATE: ClassVar[str] = "GUILD#%s"
    SK_PREFIX: ClassVar[str] = "REWARD#"

    @classmethod
    def key(cls, guild_id: int, entry_id: str) -> dict[str, str]:
        return {"pk": cls.PK_TEMPLATE % guild_id, "sk": cls.SK_PREFIX + entry_id}

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.guild_id, self.entry_id)
        item.update(
            {
                "reward_description": self.description,
                "created_at": int(self.created_at),
            }
        )
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> RewardEntry:
        return cls(
            guild_id=int(_tail(item["pk"])),
            entry_id=_tail(item["sk"]),
            description=str(item.get("reward_description", "")),
            created_at=_optional_int(item.get("created_at")) or 0,
        )


@dataclass(slots=True, frozen=True)
class Claim:
    """An issued mystery box reward.

    The reward text is copied at issue time so later catalog edits never
    change what a winner is owed. Only ``is_used``/``used_at`` ever change.
    """

    guild_id: int
    claim_id: str
    user_id: int
    reward_description: str
    claimed_at: int
    is_used: bool = False
    used_at: int | None = None

    PK_TEMPLATE: ClassVar[str] = "GUILD#%s"
    SK_PREFIX: ClassVar[str] = "CLAIM#"

    @classmethod
    def key(cls, guild_id: int, claim_id: str) -> dict[str, str]:
        return {"pk": cls.PK_TEMPLATE % guild_id, "sk": cls.SK_PREFIX + claim_id}

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.guild_id, self.claim_id)
        item.update(
            {
                "claim_id": self.claim_id,
                "user_id": str(self.user_id),
                "reward_description": self.reward_description,
                "claimed_at": int(self.claimed_at),
                "is_used": bool(self.is_used),
            }
        )
        if self.used_at is not None:
            item["used_at"] = int(self.used_at)
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Claim:
        raw_claim = item.get("claim_id")
        claim_id = str(raw_claim) if raw_claim else _tail(item["sk"])
        return cls(
            guild_id=int(_tail(item["pk"])),
            claim_id=claim_id,
            user_id=int(str(item["user_id"])),
            reward_description=str(item.get("reward_description", "")),
            claimed_at=_optional_int(item.get("claimed_at")) or 0,
            is_used=_as_bool(item.get("is_used", False)),
            used_at=_optional_int(item.get("used_at")),
        )


@dataclass(slots=True, frozen=True)
class CountdownEntry:
    guild_id: int
    channel_id: int
    message_id: int
    title: str
    end_timestamp: int
    update_interval_ms: int
    created_at: int = 0

    PK_TEMPLATE: ClassVar[str] = "CHANNEL#%s"
    SK_PREFIX: ClassVar[str] = "COUNTDOWN#"

    @classmethod
    def key(cls, channel_id: int, message_id: int) -> dict[str, str]:
        return {
            "pk": cls.PK_TEMPLATE % channel_id,
            "sk": f"{cls.SK_PREFIX}{message_id}",
        }

    def remaining_ms(self, now: int) -> int:
        return self.end_timestamp - now

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.channel_id, self.message_id)
        item.update(
            {
                "guild_id": str(self.guild_id),
                "title": self.title,
                "end_timestamp": int(self.end_timestamp),
                "update_interval_ms": int(self.update_interval_ms),
                "created_at": int(self.created_at),
            }
        )
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> CountdownEntry:
        return cls(
            guild_id=int(str(item.get("guild_id", 0))),
            channel_id=int(_tail(item["pk"])),
            message_id=int(_tail(item["sk"])),
            title=str(item.get("title", "")),
            end_timestamp=int(item["end_timestamp"]),  # type: ignore[arg-type]
            update_interval_ms=int(item.get("update_interval_ms", 5000)),  # type: ignore[arg-type]
            created_at=_optional_int(item.get("created_at")) or 0,
        )


__all__ = [
    "SCHEMA_VERSION",
    "Claim",
    "CountdownEntry",
    "RewardEntry",
    "ScheduleConfig",
    "ms_to_datetime",
    "now_ms",
]
