from datetime import date

import numpy as np
import pytest

from demandcast.models.base import Estimate, banded_estimate
from demandcast.models.classical import (
    DecompositionStrategy, StatisticalBaselineStrategy, TrendSmoothingStrategy, ols_fit, recent_trend,
)
from demandcast.records import Observation
from demandcast.seasonality import CalendarAdjuster

from conftest import daily_series


MAY_DAY = date(2025, 5, 15)  # seasonal factor 1.0, no holiday window


def test_baseline_scenario_a() -> None:
    series = daily_series([10, 12, 9, 11, 10, 13, 10])
    outcome = StatisticalBaselineStrategy().estimate(series, MAY_DAY, CalendarAdjuster())
    assert outcome.ok
    assert outcome.strategy == "baseline"
    assert outcome.estimate == Estimate(point=11, lower=8, upper=14)


def test_baseline_applies_seasonal_factor_only() -> None:
    series = daily_series([10] * 7)
    # December: seasonal 1.2, Christmas window ignored by the baseline
    outcome = StatisticalBaselineStrategy().estimate(series, date(2025, 12, 26), CalendarAdjuster())
    assert outcome.estimate.point == 12


def test_baseline_with_empty_history_defaults_to_one(no_calendar) -> None:
    outcome = StatisticalBaselineStrategy().estimate([], MAY_DAY, no_calendar)
    assert outcome.ok
    assert outcome.estimate == Estimate(point=1, lower=1, upper=1)


def test_baseline_ignores_non_finite_quantities(no_calendar) -> None:
    series = daily_series([4, 6]) + [Observation(date(2025, 3, 10), float("inf"))]
    assert StatisticalBaselineStrategy().estimate(series, MAY_DAY, no_calendar).estimate.point == 5


def test_banded_estimate_is_ordered_and_non_negative() -> None:
    for point in [0.0, 0.4, 1.0, 7.5, 123.456]:
        assert banded_estimate(point, 0.3).is_ordered()
    assert banded_estimate(-3.0, 0.25) == Estimate(0, 0, 0)


def test_ols_fit() -> None:
    slope, intercept = ols_fit(np.arange(5, dtype=float), np.array([1.0, 3.0, 5.0, 7.0, 9.0]))
    assert slope == pytest.approx(2.0)
    assert intercept == pytest.approx(1.0)
    assert ols_fit(np.array([3.0]), np.array([4.0])) == (0.0, 4.0)
    assert ols_fit(np.array([2.0, 2.0]), np.array([1.0, 3.0]))[0] == 0.0


def test_recent_trend_uses_last_window_points() -> None:
    quantities = np.array([100.0, 50.0, 1, 2, 3, 4, 5, 6, 7])
    assert recent_trend(quantities, window=7) == pytest.approx(1.0)


def test_trend_flat_series(no_calendar) -> None:
    outcome = TrendSmoothingStrategy().estimate(daily_series([10] * 10), MAY_DAY, no_calendar)
    assert outcome.ok
    assert outcome.strategy == "trend-smoothing"
    assert outcome.estimate == Estimate(point=10, lower=8, upper=13)


def test_trend_follows_rising_series(no_calendar) -> None:
    outcome = TrendSmoothingStrategy().estimate(daily_series(range(1, 11)), MAY_DAY, no_calendar)
    assert outcome.ok
    assert 7 <= outcome.estimate.point <= 11
    assert outcome.estimate.is_ordered()


def test_trend_applies_holiday_factor() -> None:
    series = daily_series([10] * 10)
    adjuster = CalendarAdjuster(include_seasonality=False)
    outcome = TrendSmoothingStrategy().estimate(series, date(2024, 12, 2), adjuster)
    assert outcome.estimate.point == 55


def test_trend_never_goes_negative(no_calendar) -> None:
    outcome = TrendSmoothingStrategy().estimate(daily_series([50, 40, 30, 20, 10, 0, 0]), MAY_DAY, no_calendar)
    assert outcome.ok
    assert outcome.estimate.point >= 0
    assert outcome.estimate.is_ordered()


def test_trend_fails_on_empty_or_non_finite(no_calendar) -> None:
    assert not TrendSmoothingStrategy().estimate([], MAY_DAY, no_calendar).ok
    series = daily_series([1, 2]) + [Observation(date(2025, 3, 5), float("nan"))]
    outcome = TrendSmoothingStrategy().estimate(series, MAY_DAY, no_calendar)
    assert not outcome.ok
    assert "non-finite" in outcome.reason


def test_trend_rejects_bad_alpha() -> None:
    with pytest.raises(ValueError):
        TrendSmoothingStrategy(alpha=0.0)


def test_decomposition_flat_series(no_calendar) -> None:
    outcome = DecompositionStrategy().estimate(daily_series([10] * 14), MAY_DAY, no_calendar)
    assert outcome.ok
    assert outcome.strategy == "decomposition"
    assert outcome.estimate == Estimate(point=10, lower=8, upper=12)


def test_decomposition_weekday_profile(no_calendar) -> None:
    # 2025-03-03 is a Monday; Mondays sell 20, other days 10
    start = date(2025, 3, 3)
    quantities = [20 if i % 7 == 0 else 10 for i in range(28)]
    series = daily_series(quantities, start=start)
    monday = date(2025, 5, 12)
    tuesday = date(2025, 5, 13)
    strategy = DecompositionStrategy()
    assert strategy.estimate(series, monday, no_calendar).estimate.point > \
        strategy.estimate(series, tuesday, no_calendar).estimate.point


def test_decomposition_fails_on_empty(no_calendar) -> None:
    assert not DecompositionStrategy().estimate([], MAY_DAY, no_calendar).ok
