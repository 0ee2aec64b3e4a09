"""
Working Time Clock
==================

Calendar arithmetic over business hours.

Only time inside [start, end) on a working weekday that is not a holiday
counts. Instants are converted to the configured zone before any hour or
weekday check; results are returned in that zone.
"""

from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable, Optional, Tuple
from zoneinfo import ZoneInfo

from grievance.core import ConfigurationException
from grievance.sla.domain.value_objects import WorkingHoursConfig

DEFAULT_WORKING_DAYS = (0, 1, 2, 3, 4)

_SECONDS_PER_HOUR = 3600.0


class WorkingTimeClock:
    """
    Pure working-time utility.

    Stateless apart from its configuration; safe to share between requests.
    Internal arithmetic uses exact ``timedelta`` values; only the public
    hour-valued results are rounded (2 decimals).
    """

    def __init__(
        self,
        start_hour: int = 9,
        end_hour: int = 18,
        working_days: Iterable[int] = DEFAULT_WORKING_DAYS,
        holidays: Iterable[date] = (),
        tz: Optional[tzinfo] = None,
    ):
        if not 0 <= start_hour < end_hour <= 24:
            raise ConfigurationException(
                f"Invalid working hours {start_hour}-{end_hour}",
                {"start": start_hour, "end": end_hour}
            )
        self.start_hour = start_hour
        self.end_hour = end_hour
        self.working_days = frozenset(working_days)
        self.holidays = frozenset(holidays)
        self.tz = tz
        # One week, plus one extra day per holiday that may sit in the way
        self._scan_limit = 7 + len(self.holidays)

    @classmethod
    def from_config(cls, config: WorkingHoursConfig) -> "WorkingTimeClock":
        return cls(
            start_hour=config.start,
            end_hour=config.end,
            working_days=config.working_days,
            holidays=config.holidays,
            tz=ZoneInfo(config.timezone),
        )

    @property
    def daily_capacity_hours(self) -> float:
        return float(self.end_hour - self.start_hour)

    # ========== Calendar predicates ==========

    def is_working_day(self, day: date) -> bool:
        return day.weekday() in self.working_days and day not in self.holidays

    def is_working_instant(self, t: datetime) -> bool:
        local = self._localize(t)
        if not self.is_working_day(local.date()):
            return False
        day_start, day_end = self._day_bounds(local.date(), local.tzinfo)
        return day_start <= local < day_end

    def next_working_instant(self, from_: datetime) -> datetime:
        """
        Smallest instant >= ``from_`` that is a working instant.

        Raises:
            ConfigurationException: no working day within the scan bound
                (e.g. empty ``working_days``)
        """
        local = self._localize(from_)
        if self.is_working_instant(local):
            return local

        day = local.date()
        day_start, _ = self._day_bounds(day, local.tzinfo)
        if self.is_working_day(day) and local < day_start:
            return day_start

        for _ in range(self._scan_limit):
            day += timedelta(days=1)
            if self.is_working_day(day):
                return self._day_bounds(day, local.tzinfo)[0]

        raise ConfigurationException(
            "No working day found; check working_days and holidays",
            {
                "from": local.isoformat(),
                "working_days": sorted(self.working_days),
                "holidays": len(self.holidays),
            }
        )

    # ========== Durations ==========

    def working_seconds(self, start: datetime, end: datetime) -> float:
        """Unrounded working time between two instants, in seconds."""
        start_local = self._localize(start)
        end_local = self._localize(end)
        if start_local >= end_local:
            return 0.0

        total = timedelta(0)
        current = self.next_working_instant(start_local)
        while current < end_local:
            _, day_end = self._day_bounds(current.date(), current.tzinfo)
            total += min(end_local, day_end) - current
            current = self.next_working_instant(day_end)
        return total.total_seconds()

    def working_duration(self, start: datetime, end: datetime) -> float:
        """Working hours between two instants, 0 if ``start >= end``."""
        return round(self.working_seconds(start, end) / _SECONDS_PER_HOUR, 2)

    def add_working_duration(self, from_: datetime, hours: float) -> datetime:
        """
        Instant reached after consuming ``hours`` of working time from ``from_``.

        Each working day contributes at most ``end - start`` hours; leftover
        time rolls to the start of the next working day.
        """
        if hours < 0:
            raise ValueError("hours must be non-negative")
        if hours == 0:
            return self._localize(from_)

        remaining = timedelta(hours=hours)
        current = self.next_working_instant(from_)
        while True:
            _, day_end = self._day_bounds(current.date(), current.tzinfo)
            available = day_end - current
            if remaining <= available:
                return current + remaining
            remaining -= available
            current = self.next_working_instant(day_end)

    # ========== Helpers ==========

    def _localize(self, t: datetime) -> datetime:
        if self.tz is None or t.tzinfo is None:
            return t
        return t.astimezone(self.tz)

    def _day_bounds(self, day: date, tz: Optional[tzinfo]) -> Tuple[datetime, datetime]:
        midnight = datetime.combine(day, time(0), tzinfo=tz)
        return (
            midnight + timedelta(hours=self.start_hour),
            midnight + timedelta(hours=self.end_hour),
        )
