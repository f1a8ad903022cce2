from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

Clock = Callable[[], datetime]

MILLIS_PER_DAY = 24 * 60 * 60 * 1000
TIME_OF_DAY_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


def epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def parse_time_of_day(value: str) -> Tuple[int, int]:
    match = TIME_OF_DAY_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time of day: {value!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid time of day: {value!r}")
    return hour, minute


def seconds_until(hour: int, minute: int, now: Optional[datetime] = None) -> int:
    """Seconds until the next wall-clock occurrence of hour:minute, always in the future."""
    now = now or datetime.now()
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return int((target - now).total_seconds())


def whole_days_between(earlier_ms: int, later_ms: int) -> int:
    return (later_ms - earlier_ms) // MILLIS_PER_DAY


class TimestampIdFactory:
    """Epoch-millisecond ids, suffixed when two are issued in the same millisecond."""

    def __init__(self) -> None:
        self._last: Optional[str] = None
        self._repeats = 0

    def __call__(self, millis: int, prefix: str = "") -> str:
        base = f"{prefix}{millis}"
        if base == self._last:
            self._repeats += 1
            return f"{base}-{self._repeats}"
        self._last = base
        self._repeats = 0
        return base
