from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Final

from .errors import InvalidDurationError

SECOND_MS: Final[int] = 1000
MINUTE_MS: Final[int] = 60 * SECOND_MS
HOUR_MS: Final[int] = 60 * MINUTE_MS
DAY_MS: Final[int] = 24 * HOUR_MS

# Countdowns accept years and (30 day) months.
COUNTDOWN_UNITS: Final[Mapping[str, int]] = {
    "y": 365 * DAY_MS,
    "mo": 30 * DAY_MS,
    "d": DAY_MS,
    "h": HOUR_MS,
    "m": MINUTE_MS,
    "s": SECOND_MS,
}
COUNTDOWN_MINIMUM_MS: Final[int] = MINUTE_MS

DROP_UNITS: Final[Mapping[str, int]] = {
    "w": 7 * DAY_MS,
    "d": DAY_MS,
    "h": HOUR_MS,
    "m": MINUTE_MS,
    "s": SECOND_MS,
}
DROP_MINIMUM_MS: Final[int] = SECOND_MS

# Digit cap per token; longer runs of digits never match.
MAX_TOKEN_DIGITS: Final[int] = 12

_PATTERN_CACHE: dict[tuple[str, ...], re.Pattern[str]] = {}


def _token_pattern(units: Mapping[str, int]) -> re.Pattern[str]:
    # Longest suffix first so "mo" is not read as "m".
    suffixes = tuple(sorted(units, key=lambda unit: (-len(unit), unit)))
    pattern = _PATTERN_CACHE.get(suffixes)
    if pattern is None:
        alternation = "|".join(re.escape(suffix) for suffix in suffixes)
        pattern = re.compile(
            rf"(?<!\d)(\d{{1,{MAX_TOKEN_DIGITS}}})({alternation})", re.IGNORECASE
        )
        _PATTERN_CACHE[suffixes] = pattern
    return pattern


def parse_duration(
    text: str | None, *, units: Mapping[str, int], minimum_ms: int
) -> int:
    """Parse ``"1d 5h 30m"`` style text into milliseconds.

    Every ``<integer><unit>`` token found in ``text`` is accumulated; anything
    between or after the tokens is ignored. Raises :class:`InvalidDurationError`
    when no token matches or the total falls below ``minimum_ms``.
    """

    if not text:
        raise InvalidDurationError("A time interval is required")

    lowered = {unit.lower(): value for unit, value in units.items()}
    total = 0
    matched = False
    for value, unit in _token_pattern(lowered).findall(text):
        total += int(value) * lowered[unit.lower()]
        matched = True

    if not matched:
        allowed = ", ".join(lowered)
        raise InvalidDurationError(
            f"Invalid time format. Use something like `1d 5h 30m` (units: {allowed})."
        )
    if total < minimum_ms:
        raise InvalidDurationError(
            f"Time interval must be at least {humanize_duration(minimum_ms)}."
        )
    return total


def parse_drop_interval(text: str | None) -> int:
    return parse_duration(text, units=DROP_UNITS, minimum_ms=DROP_MINIMUM_MS)


def parse_countdown_duration(text: str | None) -> int:
    return parse_duration(
        text, units=COUNTDOWN_UNITS, minimum_ms=COUNTDOWN_MINIMUM_MS
    )


def format_duration(ms: int, *, units: Mapping[str, int]) -> str:
    """Render ``ms`` as compact tokens that :func:`parse_duration` accepts."""

    remaining = max(int(ms), 0)
    parts: list[str] = []
    for unit, size in sorted(units.items(), key=lambda pair: -pair[1]):
        count, remaining = divmod(remaining, size)
        if count:
            parts.append(f"{count}{unit}")
    if not parts:
        smallest = min(units, key=lambda unit: units[unit])
        parts.append(f"0{smallest}")
    return " ".join(parts)


def _plural(value: int, word: str) -> str:
    return f"{value} {word}{'' if value == 1 else 's'}"


def humanize_duration(ms: int) -> str:
    """Render a duration for display, e.g. ``"1 year, 3 days, 4 hours"``."""

    if ms <= 0:
        return "Time is up!"

    total_seconds = int(ms) // SECOND_MS
    seconds = total_seconds % 60
    minutes = (total_seconds // 60) % 60
    hours = (total_seconds // 3600) % 24
    total_days = total_seconds // 86400
    years, days = divmod(total_days, 365)

    parts: list[str] = []
    if years:
        parts.append(_plural(years, "year"))
    if days:
        parts.append(_plural(days, "day"))
    if hours:
        parts.append(_plural(hours, "hour"))
    if minutes:
        parts.append(_plural(minutes, "minute"))
    if seconds or not parts:
        parts.append(_plural(seconds, "second"))
    return ", ".join(parts)


__all__ = [
    "COUNTDOWN_MINIMUM_MS",
    "COUNTDOWN_UNITS",
    "DROP_MINIMUM_MS",
    "DROP_UNITS",
    "MAX_TOKEN_DIGITS",
    "format_duration",
    "humanize_duration",
    "parse_countdown_duration",
    "parse_drop_interval",
    "parse_duration",
]
