"""Duration parsing and clock helpers."""

from __future__ import annotations

import asyncio
import math
import re
import time
from typing import TYPE_CHECKING

from unwrapped.types import Duration

if TYPE_CHECKING:
    from unwrapped.async_outcome import AsyncOutcome

_DURATION_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)(ms|s|m|h|d)$")
_UNITS: dict[str, int] = {
    "ms": 1,
    "s": 1000,
    "m": 60_000,
    "h": 3_600_000,
    "d": 86_400_000,
}
_UNBOUNDED = ("inf", "infinity", "never")


def parse_duration(duration: Duration | None) -> float:
    """Parse a duration to milliseconds.

    Numbers pass through, ``None`` and ``"inf"`` mean unbounded.
    """
    if duration is None:
        return math.inf
    if isinstance(duration, bool):
        raise ValueError(f"Invalid duration: {duration!r}")
    if isinstance(duration, (int, float)):
        if duration < 0 or math.isnan(duration):
            raise ValueError(f"Invalid duration: {duration!r}")
        return duration

    if duration.lower() in _UNBOUNDED:
        return math.inf

    match = _DURATION_PATTERN.match(duration)
    if not match:
        raise ValueError(f"Invalid duration: {duration!r}")

    value, unit = match.groups()
    ms = float(value) * _UNITS[unit]
    return int(ms) if ms.is_integer() else ms


def now_ms() -> int:
    """Wall-clock time as a Unix timestamp in milliseconds."""
    return int(time.time() * 1000)


def delay(ms: Duration) -> AsyncOutcome[bool, object]:
    """An AsyncOutcome that succeeds with True after ``ms``."""
    from unwrapped.async_outcome import AsyncOutcome

    seconds = parse_duration(ms) / 1000

    async def sleep() -> bool:
        await asyncio.sleep(seconds)
        return True

    return AsyncOutcome.from_value_awaitable(sleep())


__all__ = ["delay", "now_ms", "parse_duration"]
