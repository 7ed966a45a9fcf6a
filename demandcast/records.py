#////////////////////////////////////////////////////////////////////////////////#
# File:         records.py                                                       #
# Date:         2025-03-14                                                       #
# Description:  Data records exchanged by the forecasting engine: observations, #
#               requests, results and accuracy summaries.                        #
#////////////////////////////////////////////////////////////////////////////////#
"""
Data records for the demand forecasting engine.

Observations and forecast results are frozen dataclasses; once produced they
are never mutated. A ForecastRequest is validated as a whole before any
forecasting starts.
"""
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

import numpy as np

from demandcast import config
from demandcast.exceptions import ForecastValidationError


class ForecastPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class StrategyName(str, Enum):
    """strategy a caller can ask for"""
    BASELINE = "baseline"
    TREND = "trend"
    SEQUENCE = "sequence"
    ENSEMBLE = "ensemble"


# labels written to ForecastResult.strategy_used
BASELINE_LABEL = "baseline"
TREND_LABEL = "trend-smoothing"
SEQUENCE_LABEL = "sequence-model"
ENSEMBLE_LABEL = "ensemble"
DECOMPOSITION_LABEL = "decomposition"


@dataclass(frozen=True)
class Observation:
    """one day of aggregated sales for a product at a location"""
    date: date
    quantity: float
    unit_price: float = 0.0
    discount: float = 0.0


@dataclass(frozen=True)
class HolidayWindow:
    """named date range with a multiplicative demand effect"""
    name: str
    start_date: date
    duration_days: int
    impact_multiplier: float
    category: str = "holiday"

    def contains(self, day: date) -> bool:
        offset = (day - self.start_date).days
        return 0 <= offset < self.duration_days


def _is_count(value: Any) -> bool:
    # non-negative integer, numpy ints allowed, bools are not counts
    if isinstance(value, bool):
        return False
    return isinstance(value, (int, np.integer)) and value >= 0


@dataclass(frozen=True)
class ForecastResult:
    """
    Single demand forecast for a (product, location, horizon).

    Invariant: predicted_demand, confidence_lower and confidence_upper are
    non-negative integers with confidence_lower <= predicted_demand <=
    confidence_upper.
    """
    product_id: str
    location_id: Optional[str]
    forecast_date: date
    predicted_demand: int
    confidence_lower: int
    confidence_upper: int
    strategy_used: str
    accuracy: Optional[float] = None
    forecast_period: ForecastPeriod = ForecastPeriod.DAILY
    created_at: datetime = field(default_factory=datetime.now, compare=False)

    def violations(self) -> List[str]:
        """list every broken invariant (empty when the result is valid)"""
        problems = []
        for name in ("predicted_demand", "confidence_lower", "confidence_upper"):
            if not _is_count(getattr(self, name)):
                problems.append(f"{name}={getattr(self, name)!r} is not a non-negative integer")
        if not problems:
            if self.confidence_lower > self.predicted_demand:
                problems.append(
                    f"confidence_lower {self.confidence_lower} > predicted_demand {self.predicted_demand}"
                )
            if self.predicted_demand > self.confidence_upper:
                problems.append(
                    f"predicted_demand {self.predicted_demand} > confidence_upper {self.confidence_upper}"
                )
        if self.accuracy is not None:
            if not (isinstance(self.accuracy, (int, float)) and 0.0 <= self.accuracy <= 1.0):
                problems.append(f"accuracy {self.accuracy!r} outside [0, 1]")
        return problems

    def is_valid(self) -> bool:
        return not self.violations()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "location_id": self.location_id,
            "forecast_date": self.forecast_date.isoformat(),
            "forecast_period": self.forecast_period.value,
            "predicted_demand": int(self.predicted_demand),
            "confidence_lower": int(self.confidence_lower),
            "confidence_upper": int(self.confidence_upper),
            "accuracy": self.accuracy,
            "strategy_used": self.strategy_used,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ForecastFailure:
    """per-pair failure entry in a batch response"""
    product_id: str
    location_id: Optional[str]
    cause: str
    stage: str  # history | strategy | persistence | persistence-timeout | cancelled


@dataclass(frozen=True)
class AccuracyRecord:
    """backtested accuracy of a product's recent forecasts"""
    product_id: str
    window_days: int
    accuracy: float
    contributing_points: int
    evaluated_forecasts: int
    mae: Optional[float] = None
    rmse: Optional[float] = None
    mape: Optional[float] = None
    # strategy label -> {"accuracy", "mae", "rmse", "mape"}
    by_strategy: Dict[str, Dict[str, Optional[float]]] = field(default_factory=dict)


@dataclass
class ForecastRequest:
    """
    Forecast generation request.

    Args:
        product_ids: Products to forecast (non-empty)
        location_ids: Optional locations; one forecast per product/location pair
        period: Reporting period stored on every result
        horizon_days: Days ahead of the as-of date (1..MAX_HORIZON_DAYS)
        strategy: Requested strategy
        include_seasonality: Apply month-of-year factors
        include_holidays: Apply holiday window factors
    """
    product_ids: FrozenSet[str]
    location_ids: Optional[FrozenSet[str]] = None
    period: ForecastPeriod = ForecastPeriod.DAILY
    horizon_days: int = 30
    strategy: StrategyName = StrategyName.ENSEMBLE
    include_seasonality: bool = True
    include_holidays: bool = True

    def __post_init__(self):
        # accept any iterable of ids but keep a hashable, de-duplicated set
        if self.product_ids is not None and not isinstance(self.product_ids, (str, bytes)):
            self.product_ids = frozenset(self.product_ids)
        if self.location_ids is not None and not isinstance(self.location_ids, (str, bytes)):
            self.location_ids = frozenset(self.location_ids)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ForecastRequest":
        """build a request from an API payload, coercing enum strings"""
        errors = []
        period = payload.get("period", ForecastPeriod.DAILY.value)
        try:
            period = ForecastPeriod(str(getattr(period, "value", period)).lower())
        except ValueError:
            errors.append(f"unknown period: {period!r}")
        strategy = payload.get("strategy", StrategyName.ENSEMBLE.value)
        try:
            strategy = StrategyName(str(getattr(strategy, "value", strategy)).lower())
        except ValueError:
            errors.append(f"unknown strategy: {strategy!r}")
        if errors:
            raise ForecastValidationError("; ".join(errors), errors)

        return cls(
            product_ids=payload.get("product_ids") or frozenset(),
            location_ids=payload.get("location_ids") or None,
            period=period,
            horizon_days=payload.get("horizon_days", 30),
            strategy=strategy,
            include_seasonality=bool(payload.get("include_seasonality", True)),
            include_holidays=bool(payload.get("include_holidays", True)),
        )

    def validation_errors(self) -> List[str]:
        errors = []
        if not self.product_ids or isinstance(self.product_ids, (str, bytes)):
            errors.append("product_ids must be a non-empty set of identifiers")
        else:
            if len(self.product_ids) > config.MAX_PRODUCTS_PER_REQUEST:
                errors.append(
                    f"too many products: {len(self.product_ids)} > {config.MAX_PRODUCTS_PER_REQUEST}"
                )
            errors.extend(_identifier_errors("product", self.product_ids))
        if self.location_ids is not None:
            if isinstance(self.location_ids, (str, bytes)):
                errors.append("location_ids must be a set of identifiers")
            else:
                errors.extend(_identifier_errors("location", self.location_ids))

        horizon = self.horizon_days
        if isinstance(horizon, bool) or not isinstance(horizon, (int, np.integer)):
            errors.append(f"horizon_days must be an integer, got {horizon!r}")
        elif not 1 <= horizon <= config.MAX_HORIZON_DAYS:
            errors.append(f"horizon_days must be in [1, {config.MAX_HORIZON_DAYS}], got {horizon}")

        if not isinstance(self.period, ForecastPeriod):
            errors.append(f"unknown period: {self.period!r}")
        if not isinstance(self.strategy, StrategyName):
            errors.append(f"unknown strategy: {self.strategy!r}")
        return errors

    def validate(self) -> None:
        """raise ForecastValidationError listing every problem with the request"""
        errors = self.validation_errors()
        if errors:
            raise ForecastValidationError("invalid forecast request: " + "; ".join(errors), errors)

    def pairs(self) -> List[Tuple[str, Optional[str]]]:
        """(product, location) pairs in response order"""
        locations = sorted(self.location_ids) if self.location_ids else [None]
        return [(product_id, location_id)
                for product_id in sorted(self.product_ids)
                for location_id in locations]


def _identifier_errors(kind: str, identifiers: Iterable[Any]) -> List[str]:
    errors = []
    for identifier in identifiers:
        if not isinstance(identifier, str) or not identifier.strip():
            errors.append(f"invalid {kind} id: {identifier!r}")
    return errors


@dataclass
class ForecastBatch:
    """engine response for one request"""
    results: List[ForecastResult] = field(default_factory=list)
    failures: List[ForecastFailure] = field(default_factory=list)
    accuracy: Dict[str, AccuracyRecord] = field(default_factory=dict)
    persisted: bool = False
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.failures

    def summary(self) -> Dict[str, Any]:
        """totals and strategy distribution"""
        distribution = Counter(result.strategy_used for result in self.results)
        accuracies = [record.accuracy for record in self.accuracy.values()]
        return {
            "total_forecasts": len(self.results),
            "total_failures": len(self.failures),
            "strategy_distribution": dict(distribution),
            "average_accuracy": float(np.mean(accuracies)) if accuracies else None,
            "failures_by_stage": dict(Counter(failure.stage for failure in self.failures)),
            "persisted": self.persisted,
            "cancelled": self.cancelled,
        }


def round_half_up(value: float) -> int:
    """round .5 away from zero for positives (commercial rounding)"""
    if not math.isfinite(value):
        raise ValueError(f"cannot round non-finite value {value!r}")
    return int(math.floor(value + 0.5))
