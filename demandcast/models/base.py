#////////////////////////////////////////////////////////////////////////////////#
# File:         base.py                                                          #
# Date:         2025-03-20                                                       #
# Description:  Common interface for demand estimation strategies.             #
#////////////////////////////////////////////////////////////////////////////////#
"""common strategy interface and tagged outcomes"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional, Sequence

from demandcast.records import Observation, round_half_up
from demandcast.seasonality import CalendarAdjuster

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Estimate:
    """point estimate with its confidence band"""
    point: int
    lower: int
    upper: int

    def is_ordered(self) -> bool:
        values = (self.point, self.lower, self.upper)
        if not all(isinstance(v, int) and not isinstance(v, bool) for v in values):
            return False
        return 0 <= self.lower <= self.point <= self.upper


@dataclass(frozen=True)
class StrategyOutcome:
    """
    Tagged result of running one strategy: either an estimate or the reason
    the strategy could not produce one.
    """
    strategy: str
    estimate: Optional[Estimate] = None
    reason: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.estimate is not None

    @classmethod
    def success(cls, strategy: str, estimate: Estimate, **detail) -> "StrategyOutcome":
        return cls(strategy=strategy, estimate=estimate, detail=detail)

    @classmethod
    def failure(cls, strategy: str, reason: str, **detail) -> "StrategyOutcome":
        return cls(strategy=strategy, reason=reason, detail=detail)


def banded_estimate(point: float, bound_fraction: float) -> Estimate:
    """
    Round a point forecast and put a symmetric percentage band around it.

    The band is taken from the rounded point; the point is floored at 0.
    """
    rounded = max(0, round_half_up(point))
    lower = max(0, round_half_up(rounded * (1.0 - bound_fraction)))
    upper = max(rounded, round_half_up(rounded * (1.0 + bound_fraction)))
    return Estimate(point=rounded, lower=min(lower, rounded), upper=upper)


_DEFAULT_ADJUSTER = CalendarAdjuster()


class ForecastStrategy(ABC):
    """
    One interchangeable demand estimation algorithm.

    Subclasses implement _estimate and may raise; estimate() converts any
    exception into a failure outcome so callers can pattern-match on the
    result instead of wrapping calls in try/except.
    """

    name: str = "strategy"

    def estimate(self, series: Sequence[Observation], forecast_date: date,
                 adjuster: Optional[CalendarAdjuster] = None) -> StrategyOutcome:
        adjuster = adjuster or _DEFAULT_ADJUSTER
        try:
            result = self._estimate(list(series), forecast_date, adjuster)
        except Exception as e:
            logger.debug(f"{self.name} failed: {type(e).__name__}: {e}")
            return StrategyOutcome.failure(self.name, f"{type(e).__name__}: {e}")
        if isinstance(result, StrategyOutcome):
            return result
        return StrategyOutcome.success(self.name, result)

    @abstractmethod
    def _estimate(self, series: Sequence[Observation], forecast_date: date,
                  adjuster: CalendarAdjuster):
        """return an Estimate or a StrategyOutcome"""
