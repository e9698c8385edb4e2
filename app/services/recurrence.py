# file: app/services/recurrence.py

"""
Recurrence Engine.

Maps a fired reminder to its next state. Pure and deterministic: the same
(time, recurrence) input always yields the same write-back, so any number of
schedulers may apply it to the same occurrence and converge.

Calendar arithmetic keeps the wall-clock time of day fixed in
REMINDER_TIMEZONE and rolls the date. Across a DST transition the UTC gap
between two occurrences is 23h or 25h instead of 24h; that civil-time drift
is a known approximation.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from app.config import REMINDER_TIMEZONE

RECURRENCE_STEPS = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
}
VALID_RECURRENCES = ("none", *RECURRENCE_STEPS)


@dataclass(frozen=True)
class WriteBack:
    """Fields to persist on a reminder after it fires."""
    time: str
    notified: bool

    def as_values(self) -> dict:
        return {"time": self.time, "notified": self.notified}


def parse_time(value) -> datetime:
    """Parses an ISO-8601 string (or datetime) into an aware UTC datetime. Naive input is taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_time(value: datetime) -> str:
    """Canonical storage format, e.g. 2024-01-15T07:00:00.000Z. Sorts lexicographically by instant."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def next_state(time_value, recurrence: Optional[str], tz: Optional[ZoneInfo] = None) -> WriteBack:
    recurrence = recurrence or "none"
    if recurrence not in VALID_RECURRENCES:
        raise ValueError(f"Unknown recurrence '{recurrence}'")

    if recurrence == "none":
        # Terminal: the occurrence stays where it is and never fires again
        time_value = time_value if isinstance(time_value, str) else format_time(time_value)
        return WriteBack(time=time_value, notified=True)

    tz = tz or ZoneInfo(REMINDER_TIMEZONE)
    local = parse_time(time_value).astimezone(tz)
    wall_clock = local.replace(tzinfo=None) + RECURRENCE_STEPS[recurrence]
    return WriteBack(time=format_time(wall_clock.replace(tzinfo=tz)), notified=False)


def is_due(reminder, now: Optional[datetime] = None) -> bool:
    """A reminder is due when it is not dismissed, not yet notified and its time has passed."""
    if reminder.dismissed or reminder.notified or not reminder.time:
        return False
    now = now or datetime.now(timezone.utc)
    return parse_time(reminder.time) <= parse_time(now)
