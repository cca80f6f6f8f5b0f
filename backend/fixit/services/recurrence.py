"""Recurrence rules for scheduled maintenance.

Datetimes stored by the application are naive UTC. Calendar arithmetic runs
in the configured application timezone so that a task due at 09:00 local
stays at 09:00 local across DST transitions.

Weekday numbering follows the client convention: 0 = Sunday ... 6 = Saturday.
Days of month beyond the length of a month are clamped to its last day, so
``day_of_month=31`` fires on Feb 28 (Feb 29 in leap years), Apr 30, Mar 31...
"""

import calendar
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterator, Optional
from zoneinfo import ZoneInfo

from fixit.models.enums import FrequencyType

# Upper bound on candidates inspected for a single computation
MAX_SCAN = 5000


class InvalidFrequency(ValueError):
    """Raised when a frequency record is not well-formed."""


@dataclass(frozen=True)
class Frequency:
    type: FrequencyType
    interval: int = 1
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    month_of_year: Optional[int] = None
    custom_days: tuple[int, ...] = field(default_factory=tuple)
    end_date: Optional[datetime] = None
    occurrences: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "Frequency":
        if not data or not data.get("type"):
            return cls(type=FrequencyType.ONCE)
        raw_type = data["type"]
        try:
            freq_type = raw_type if isinstance(raw_type, FrequencyType) else FrequencyType(str(raw_type).lower())
        except ValueError:
            raise InvalidFrequency(f"Unsupported frequency type: {data['type']!r}")

        end_date = data.get("end_date")
        if isinstance(end_date, str):
            end_date = datetime.fromisoformat(end_date)
        if isinstance(end_date, datetime) and end_date.tzinfo is not None:
            end_date = _to_utc(end_date)

        freq = cls(
            type=freq_type,
            interval=int(data.get("interval") or 1),
            day_of_week=data.get("day_of_week"),
            day_of_month=data.get("day_of_month"),
            month_of_year=data.get("month_of_year"),
            custom_days=tuple(sorted({int(d) for d in data.get("custom_days") or []})),
            end_date=end_date,
            occurrences=data.get("occurrences"),
        )
        freq.validate()
        return freq

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "interval": self.interval,
            "day_of_week": self.day_of_week,
            "day_of_month": self.day_of_month,
            "month_of_year": self.month_of_year,
            "custom_days": list(self.custom_days),
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "occurrences": self.occurrences,
        }

    def validate(self) -> None:
        if self.interval < 1:
            raise InvalidFrequency("interval must be at least 1")
        if self.day_of_week is not None and not 0 <= self.day_of_week <= 6:
            raise InvalidFrequency("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        if self.day_of_month is not None and not 1 <= self.day_of_month <= 31:
            raise InvalidFrequency("day_of_month must be between 1 and 31")
        if self.month_of_year is not None and not 1 <= self.month_of_year <= 12:
            raise InvalidFrequency("month_of_year must be between 1 and 12")
        if any(not 1 <= d <= 31 for d in self.custom_days):
            raise InvalidFrequency("custom_days must be between 1 and 31")
        if self.type == FrequencyType.CUSTOM and not self.custom_days:
            raise InvalidFrequency("custom frequency requires at least one custom day")
        if self.occurrences is not None and self.occurrences < 0:
            raise InvalidFrequency("occurrences cannot be negative")

    def consume_occurrence(self) -> "Frequency":
        if self.occurrences is None:
            return self
        return replace(self, occurrences=max(self.occurrences - 1, 0))

    @property
    def exhausted(self) -> bool:
        return self.occurrences is not None and self.occurrences <= 0


def _to_local(value: datetime, tz: ZoneInfo) -> datetime:
    return value.replace(tzinfo=timezone.utc).astimezone(tz)


def _to_utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _clamp(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def _js_weekday(d: date) -> int:
    return (d.weekday() + 1) % 7


def _month_index(d: date) -> int:
    return d.year * 12 + d.month - 1


def _from_month_index(index: int) -> tuple[int, int]:
    return index // 12, index % 12 + 1


def _candidate_dates(freq: Frequency, anchor: date, hint: date) -> Iterator[date]:
    """Ascending local dates matching ``freq``, starting near ``hint``."""
    n = freq.interval

    if freq.type == FrequencyType.ONCE:
        yield anchor
        return

    if freq.type == FrequencyType.DAILY:
        k = max(0, (hint - anchor).days // n - 1)
        while True:
            yield anchor + timedelta(days=n * k)
            k += 1

    if freq.type == FrequencyType.WEEKLY:
        dow = freq.day_of_week if freq.day_of_week is not None else _js_weekday(anchor)
        first = anchor + timedelta(days=(dow - _js_weekday(anchor)) % 7)
        k = max(0, (hint - first).days // (7 * n) - 1)
        while True:
            yield first + timedelta(weeks=n * k)
            k += 1

    if freq.type == FrequencyType.MONTHLY:
        day = freq.day_of_month or anchor.day
        base = _month_index(anchor)
        k = max(0, (_month_index(hint) - base) // n - 1)
        while True:
            year, month = _from_month_index(base + n * k)
            yield _clamp(year, month, day)
            k += 1

    if freq.type == FrequencyType.YEARLY:
        month = freq.month_of_year or anchor.month
        day = freq.day_of_month or anchor.day
        k = max(0, (hint.year - anchor.year) // n - 1)
        while True:
            yield _clamp(anchor.year + n * k, month, day)
            k += 1

    if freq.type == FrequencyType.CUSTOM:
        base = _month_index(anchor)
        k = max(0, (_month_index(hint) - base) // n - 1)
        while True:
            year, month = _from_month_index(base + n * k)
            # Clamping can fold 29/30/31 onto the same day in short months
            for d in sorted({_clamp(year, month, day) for day in freq.custom_days}):
                yield d
            k += 1


def next_due_date(
    freq: Frequency,
    anchor: datetime,
    after: datetime,
    tz_name: str = "UTC",
) -> Optional[datetime]:
    """Smallest occurrence D > ``after`` (and D >= ``anchor``) of the series.

    ``anchor`` is the first scheduled execution; its local time of day is kept
    for every occurrence. Returns None when the series is exhausted or the
    next occurrence falls after ``freq.end_date``.
    """
    if freq.exhausted:
        return None

    tz = ZoneInfo(tz_name)
    local_anchor = _to_local(anchor, tz)
    time_of_day: time = local_anchor.time()
    hint = max(local_anchor.date(), _to_local(after, tz).date())

    for scanned, day in enumerate(_candidate_dates(freq, local_anchor.date(), hint)):
        if scanned > MAX_SCAN:
            return None
        candidate = _to_utc(datetime.combine(day, time_of_day, tzinfo=tz))
        if candidate < anchor:
            continue
        if freq.end_date is not None and candidate > freq.end_date:
            return None
        if candidate > after:
            return candidate
    return None


def first_due_date(freq: Frequency, anchor: datetime, tz_name: str = "UTC") -> Optional[datetime]:
    """First occurrence at or after the anchor."""
    return next_due_date(freq, anchor, anchor - timedelta(microseconds=1), tz_name)


def describe(recurring: bool, freq: Optional[Frequency]) -> str:
    """Human readable label, e.g. "Every 2 weeks"."""
    if not recurring or freq is None or freq.type == FrequencyType.ONCE:
        return "One-time"
    n = freq.interval
    if freq.type == FrequencyType.DAILY:
        return "Daily" if n == 1 else f"Every {n} days"
    if freq.type == FrequencyType.WEEKLY:
        return "Weekly" if n == 1 else f"Every {n} weeks"
    if freq.type == FrequencyType.MONTHLY:
        return "Monthly" if n == 1 else f"Every {n} months"
    if freq.type == FrequencyType.YEARLY:
        return "Yearly" if n == 1 else f"Every {n} years"
    days = ", ".join(str(d) for d in freq.custom_days)
    return f"Custom days: {days}"
