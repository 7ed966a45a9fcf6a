#////////////////////////////////////////////////////////////////////////////////#
# File:         seasonality.py                                                   #
# Date:         2025-03-18                                                       #
# Description:  Calendar adjustment tables: month-of-year seasonal factors and  #
#               holiday windows.                                                 #
#////////////////////////////////////////////////////////////////////////////////#
"""
Seasonal and holiday adjustment factors.

Both lookups are pure: the same date always maps to the same multiplier and
nothing is mutated after construction.
"""
from datetime import date, timedelta
from functools import lru_cache
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from demandcast import config
from demandcast.records import HolidayWindow


class SeasonalProfile:
    """month-of-year multiplier table"""

    def __init__(self, factors: Optional[Mapping[int, float]] = None):
        factors = dict(config.SEASONAL_FACTORS if factors is None else factors)
        missing = [month for month in range(1, 13) if month not in factors]
        if missing:
            raise ValueError(f"seasonal table is missing months: {missing}")
        for month, factor in factors.items():
            if not factor > 0:
                raise ValueError(f"seasonal factor for month {month} must be positive, got {factor}")
        # read-only copy
        self._factors: Tuple[float, ...] = tuple(float(factors[month]) for month in range(1, 13))

    def factor(self, day: date) -> float:
        return self._factors[day.month - 1]

    def as_dict(self) -> Dict[int, float]:
        return {month: self._factors[month - 1] for month in range(1, 13)}


def _nth_weekday(year: int, month: int, weekday: int, n: int) -> date:
    # weekday uses date.weekday() numbering (Monday=0)
    first = date(year, month, 1)
    offset = (weekday - first.weekday()) % 7
    return first + timedelta(days=offset + 7 * (n - 1))


def resolve_anchor(anchor: Union[str, Tuple[int, int]], year: int) -> date:
    """start date of a recurring holiday in a given year"""
    if isinstance(anchor, str):
        thanksgiving = _nth_weekday(year, 11, 3, 4)  # fourth Thursday of November
        if anchor == "black_friday":
            return thanksgiving + timedelta(days=1)
        if anchor == "cyber_monday":
            return thanksgiving + timedelta(days=4)
        raise ValueError(f"unknown holiday anchor rule: {anchor}")
    month, day_of_month = anchor
    return date(year, month, day_of_month)


def windows_for_year(rules: Sequence[Mapping], year: int) -> List[HolidayWindow]:
    """materialize recurring holiday rules into concrete windows"""
    return [
        HolidayWindow(
            name=rule["name"],
            start_date=resolve_anchor(rule["anchor"], year),
            duration_days=int(rule["duration_days"]),
            impact_multiplier=float(rule["impact"]),
            category=rule.get("category", "holiday"),
        )
        for rule in rules
    ]


class HolidayCalendar:
    """
    Holiday windows with multiplicative demand effects.

    Either a fixed list of windows or recurring rules (config.HOLIDAY_RULES by
    default). For recurring rules a date is checked against the windows that
    start in its own year and in the previous year, so windows that spill over
    new year are honoured.
    """

    def __init__(self, windows: Optional[Iterable[HolidayWindow]] = None,
                 rules: Optional[Sequence[Mapping]] = None):
        self._windows: Tuple[HolidayWindow, ...] = tuple(windows) if windows is not None else ()
        if windows is None:
            self._rules: Tuple[Mapping, ...] = tuple(config.HOLIDAY_RULES if rules is None else rules)
        else:
            self._rules = tuple(rules or ())
        for window in self._windows:
            _check_window(window)
        for rule in self._rules:
            if not rule["impact"] > 0 or int(rule["duration_days"]) < 1:
                raise ValueError(f"invalid holiday rule: {rule}")

        rules_snapshot = self._rules

        @lru_cache(maxsize=32)
        def _recurring(year: int) -> Tuple[HolidayWindow, ...]:
            return tuple(windows_for_year(rules_snapshot, year))

        self._recurring = _recurring

    def windows_for(self, day: date) -> List[HolidayWindow]:
        """every window that contains the date"""
        candidates = list(self._windows)
        if self._rules:
            candidates.extend(self._recurring(day.year - 1))
            candidates.extend(self._recurring(day.year))
        return [window for window in candidates if window.contains(day)]

    def factor(self, day: date) -> float:
        multiplier = 1.0
        for window in self.windows_for(day):
            multiplier *= window.impact_multiplier
        return multiplier

    def windows_in_year(self, year: int) -> List[HolidayWindow]:
        """fixed windows starting in the year plus the recurring ones"""
        windows = [w for w in self._windows if w.start_date.year == year]
        if self._rules:
            windows.extend(self._recurring(year))
        return sorted(windows, key=lambda w: w.start_date)


def _check_window(window: HolidayWindow) -> None:
    if window.duration_days < 1:
        raise ValueError(f"holiday window {window.name} must last at least one day")
    if not window.impact_multiplier > 0:
        raise ValueError(f"holiday window {window.name} impact must be positive")


class CalendarAdjuster:
    """
    Composes seasonal and holiday factors for one request.

    A disabled component contributes 1.0.
    """

    def __init__(self, profile: Optional[SeasonalProfile] = None,
                 calendar: Optional[HolidayCalendar] = None,
                 include_seasonality: bool = True,
                 include_holidays: bool = True):
        self.profile = profile or SeasonalProfile()
        self.calendar = calendar or HolidayCalendar()
        self.include_seasonality = include_seasonality
        self.include_holidays = include_holidays

    def seasonal(self, day: date) -> float:
        return self.profile.factor(day) if self.include_seasonality else 1.0

    def holiday(self, day: date) -> float:
        return self.calendar.factor(day) if self.include_holidays else 1.0

    def combined(self, day: date) -> float:
        return self.seasonal(day) * self.holiday(day)

    def with_flags(self, include_seasonality: bool, include_holidays: bool) -> "CalendarAdjuster":
        """same tables, different switches"""
        return CalendarAdjuster(self.profile, self.calendar, include_seasonality, include_holidays)
