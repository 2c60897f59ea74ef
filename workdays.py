import bisect
import datetime
from datetime import date, timedelta
from functools import lru_cache
from typing import Iterable, List, Optional

import pandas as pd

from defaults import FIXED_HOLIDAYS, GOOD_FRIDAY_OFFSET, CORPUS_CHRISTI_OFFSET


def to_date(value) -> date:
    """Normalise date / datetime / Timestamp / ISO string to a plain date."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return pd.Timestamp(value).date()


@lru_cache(maxsize=None)
def easter_sunday(year: int) -> date:
    """
    Easter Sunday for a Gregorian year (Anonymous Gregorian / Meeus-Jones-Butcher).
    """
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    l = (32 + 2 * e + 2 * i - h - k) % 7
    m = (a + 11 * h + 22 * l) // 451
    month, day = divmod(h + l - 7 * m + 114, 31)
    return date(year, month, day + 1)


@lru_cache(maxsize=None)
def national_holidays(year: int) -> frozenset:
    easter = easter_sunday(year)
    days = {date(year, month, day) for month, day in FIXED_HOLIDAYS}
    days.add(easter + timedelta(days=GOOD_FRIDAY_OFFSET))     # Sexta-feira Santa
    days.add(easter + timedelta(days=CORPUS_CHRISTI_OFFSET))  # Corpo de Deus
    return frozenset(days)


# -----------------------------
# Calendar (workdays)
# -----------------------------
class PortugueseCalendar:
    def __init__(self, extra_holidays: Optional[Iterable] = None, workweek=None):
        self.extra_holidays = frozenset(to_date(h) for h in (extra_holidays or []))
        # workweek: 0=Monday .. 6=Sunday
        self.workweek = frozenset(workweek if workweek is not None else [0, 1, 2, 3, 4])

    def is_holiday(self, value) -> bool:
        d = to_date(value)
        return d in national_holidays(d.year) or d in self.extra_holidays

    def is_workday(self, value) -> bool:
        d = to_date(value)
        return d.weekday() in self.workweek and not self.is_holiday(d)

    def add_workdays(self, start, days: int) -> date:
        """
        Move `days` working days away from `start` (backwards when negative).
        The start itself is never counted; days == 0 returns start unchanged.
        """
        current = to_date(start)
        step = timedelta(days=1 if days >= 0 else -1)
        remaining = abs(days)
        while remaining > 0:
            current += step
            if self.is_workday(current):
                remaining -= 1
        return current

    def next_working_day(self, value) -> date:
        d = to_date(value)
        while not self.is_workday(d):
            d += timedelta(days=1)
        return d

    def working_days_between(self, start, end) -> int:
        """Working days in the half-open interval [start, end); negative if end < start."""
        a, b = to_date(start), to_date(end)
        sign = 1
        if b < a:
            a, b, sign = b, a, -1
        count = 0
        d = a
        while d < b:
            if self.is_workday(d):
                count += 1
            d += timedelta(days=1)
        return sign * count


_DEFAULT_CALENDAR = PortugueseCalendar()


def is_portuguese_holiday(value) -> bool:
    return _DEFAULT_CALENDAR.is_holiday(value)


def is_working_day(value) -> bool:
    return _DEFAULT_CALENDAR.is_workday(value)


def add_working_days(value, days: int) -> date:
    return _DEFAULT_CALENDAR.add_workdays(value, days)


class WorkdayTimeline:
    """
    Maps working-day offsets to dates for one schedule. Offset 0 is the first
    working day on or after the project start; the table grows lazily.
    Built per scheduling call, never shared.
    """

    def __init__(self, calendar: PortugueseCalendar, start):
        self.calendar = calendar
        self.origin = calendar.next_working_day(start)
        self._days: List[date] = [self.origin]

    def _extend_to(self, offset: int):
        while len(self._days) <= offset:
            self._days.append(self.calendar.add_workdays(self._days[-1], 1))

    def date_at(self, offset: int) -> date:
        if offset < 0:
            return self.calendar.add_workdays(self.origin, offset)
        self._extend_to(offset)
        return self._days[offset]

    def offset_of(self, value) -> int:
        """Offset of a date; non-working days map to the next working day."""
        d = to_date(value)
        if d < self.origin:
            return -self.calendar.working_days_between(d, self.origin)
        while self._days[-1] < d:
            self._extend_to(len(self._days))
        return bisect.bisect_left(self._days, d)

    def month_at(self, offset: int) -> int:
        """Zero-based month index of the working day at `offset`."""
        return self.date_at(offset).month - 1
