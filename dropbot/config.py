"""Configuration helpers for the drop bot runtime."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .messaging import DEFAULT_TICKET_HINT

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

REQUIRED_VARS = ("DISCORD_TOKEN", "DROPBOT_TABLE_NAME")


def env_bool(name: str, *, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


def env_int(name: str, *, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_positive_int(name: str, *, default: int) -> int:
    value = env_int(name, default=default)
    if value is None or value <= 0:
        return default
    return value


def _log_level(raw: str | None, *, debug: bool) -> int:
    if debug:
        return logging.DEBUG
    if not raw:
        return logging.INFO
    level = logging.getLevelName(raw.strip().upper())
    return level if isinstance(level, int) else logging.INFO


@dataclass(frozen=True, slots=True)
class EnvironmentConfig:
    discord_token: str
    table_name: str
    aws_region: str = "us-east-1"
    guild_id: int | None = None
    claim_timeout_seconds: int = 60
    countdown_update_seconds: int = 5
    ticket_hint: str = DEFAULT_TICKET_HINT
    log_level: int = logging.INFO

    @classmethod
    def load(cls) -> EnvironmentConfig:
        missing = [name for name in REQUIRED_VARS if not os.getenv(name)]
        if missing:
            raise RuntimeError("Missing env vars: " + ", ".join(sorted(missing)))

        return cls(
            discord_token=os.environ["DISCORD_TOKEN"],
            table_name=os.environ["DROPBOT_TABLE_NAME"],
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            guild_id=env_int("DROPBOT_GUILD_ID"),
            claim_timeout_seconds=env_positive_int("CLAIM_TIMEOUT_SECONDS", default=60),
            countdown_update_seconds=env_positive_int(
                "COUNTDOWN_UPDATE_SECONDS", default=5
            ),
            ticket_hint=os.getenv("TICKET_CHANNEL_HINT") or DEFAULT_TICKET_HINT,
            log_level=_log_level(
                os.getenv("LOG_LEVEL"), debug=env_bool("DROPBOT_DEBUG")
            ),
        )


__all__ = ["EnvironmentConfig", "REQUIRED_VARS", "env_bool", "env_int", "env_positive_int"]
