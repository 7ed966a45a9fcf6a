from datetime import date

import pytest

from demandcast.exceptions import ForecastValidationError
from demandcast.records import (
    ForecastBatch, ForecastFailure, ForecastPeriod, ForecastRequest, ForecastResult,
    HolidayWindow, StrategyName, round_half_up,
)


def make_result(point=10, lower=8, upper=12, accuracy=None) -> ForecastResult:
    return ForecastResult(
        product_id="P1", location_id=None, forecast_date=date(2025, 6, 1),
        predicted_demand=point, confidence_lower=lower, confidence_upper=upper,
        strategy_used="baseline", accuracy=accuracy,
    )


def test_valid_result_has_no_violations() -> None:
    assert make_result().is_valid()
    assert make_result(0, 0, 0).is_valid()


@pytest.mark.parametrize(
    "point,lower,upper",
    [(10, 11, 12), (13, 8, 12), (-1, 0, 2), (10.5, 8, 12), (True, 0, 2)],
)
def test_result_invariant_violations(point, lower, upper) -> None:
    assert not make_result(point, lower, upper).is_valid()


def test_accuracy_outside_unit_interval_is_invalid() -> None:
    assert make_result(accuracy=0.5).is_valid()
    assert not make_result(accuracy=1.5).is_valid()


def test_result_to_dict_serializes_dates_and_enums() -> None:
    payload = make_result().to_dict()
    assert payload["forecast_date"] == "2025-06-01"
    assert payload["forecast_period"] == "daily"
    assert payload["predicted_demand"] == 10


def test_round_half_up() -> None:
    assert round_half_up(10.5) == 11
    assert round_half_up(7.5) == 8
    assert round_half_up(7.49) == 7
    assert round_half_up(0.0) == 0
    with pytest.raises(ValueError):
        round_half_up(float("nan"))


def test_holiday_window_contains_is_half_open() -> None:
    window = HolidayWindow("Test", date(2025, 1, 1), 3, 1.5)
    assert window.contains(date(2025, 1, 1))
    assert window.contains(date(2025, 1, 3))
    assert not window.contains(date(2025, 1, 4))
    assert not window.contains(date(2024, 12, 31))


def test_request_validation_collects_every_error() -> None:
    request = ForecastRequest(product_ids=[], horizon_days=0)
    with pytest.raises(ForecastValidationError) as excinfo:
        request.validate()
    assert len(excinfo.value.errors) == 2


@pytest.mark.parametrize("horizon", [0, 366, -5, True, 1.5])
def test_request_rejects_bad_horizon(horizon) -> None:
    request = ForecastRequest(product_ids={"P1"}, horizon_days=horizon)
    assert request.validation_errors()


@pytest.mark.parametrize("horizon", [1, 30, 365])
def test_request_accepts_horizon_bounds(horizon) -> None:
    assert ForecastRequest(product_ids={"P1"}, horizon_days=horizon).validation_errors() == []


def test_request_rejects_blank_ids_and_bare_strings() -> None:
    assert ForecastRequest(product_ids={"P1", " "}).validation_errors()
    assert ForecastRequest(product_ids="P1").validation_errors()


def test_request_from_dict_coerces_enums() -> None:
    request = ForecastRequest.from_dict(
        {"product_ids": ["P1", "P1", "P2"], "period": "WEEKLY", "strategy": "trend"}
    )
    assert request.product_ids == frozenset({"P1", "P2"})
    assert request.period is ForecastPeriod.WEEKLY
    assert request.strategy is StrategyName.TREND


def test_request_from_dict_rejects_unknown_strategy() -> None:
    with pytest.raises(ForecastValidationError, match="unknown strategy"):
        ForecastRequest.from_dict({"product_ids": ["P1"], "strategy": "prophet"})


def test_request_pairs_are_sorted() -> None:
    request = ForecastRequest(product_ids={"P2", "P1"}, location_ids={"L2", "L1"})
    assert request.pairs() == [("P1", "L1"), ("P1", "L2"), ("P2", "L1"), ("P2", "L2")]
    assert ForecastRequest(product_ids={"P1"}).pairs() == [("P1", None)]


def test_batch_summary() -> None:
    batch = ForecastBatch(
        results=[make_result(), make_result()],
        failures=[ForecastFailure("P9", None, "boom", "history")],
    )
    summary = batch.summary()
    assert not batch.succeeded
    assert summary["total_forecasts"] == 2
    assert summary["strategy_distribution"] == {"baseline": 2}
    assert summary["failures_by_stage"] == {"history": 1}
    assert summary["average_accuracy"] is None
