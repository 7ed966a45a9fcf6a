import math
from datetime import date, timedelta

import numpy as np
import pandas as pd
import pytest

from demandcast.data_loader import DataFrameSalesSource
from demandcast.evaluators.accuracy import (
    AccuracyEvaluator, calculate_mae, calculate_mape, calculate_rmse, error_metrics, score_pairs,
)
from demandcast.persistence import InMemoryForecastStore
from demandcast.records import ForecastResult


AS_OF = date(2025, 4, 30)


def forecast(day, predicted, strategy="ensemble", product_id="P1") -> ForecastResult:
    return ForecastResult(
        product_id=product_id, location_id=None, forecast_date=day,
        predicted_demand=predicted, confidence_lower=0, confidence_upper=predicted + 5,
        strategy_used=strategy,
    )


def test_score_pairs_scenario_e() -> None:
    # relative errors 0, 0.1, 0.2, 0.5 and 1.0
    pairs = [(10, 10), (10, 9), (10, 8), (10, 5), (0, 5)]
    accuracy, contributing = score_pairs(pairs)
    assert accuracy == pytest.approx(0.64)
    assert contributing == 5


def test_score_pairs_without_information_is_zero() -> None:
    assert score_pairs([]) == (0.0, 0)
    assert score_pairs([(0, 0), (0, 0)]) == (0.0, 0)


def test_score_pairs_is_clamped_at_zero() -> None:
    accuracy, _ = score_pairs([(0, 100), (100, 0)])
    assert accuracy == 0.0


def test_small_values_use_unit_denominator() -> None:
    # max(0.5, 0, 1) = 1
    accuracy, _ = score_pairs([(0.5, 0)])
    assert accuracy == pytest.approx(0.5)


def test_metric_helpers() -> None:
    actuals = np.array([10.0, 8.0, 0.0])
    predictions = np.array([10.0, 10.0, 5.0])
    assert calculate_mae(actuals, predictions) == pytest.approx(7 / 3)
    assert calculate_rmse(actuals, predictions) == pytest.approx(math.sqrt(29 / 3))


def test_mape_and_error_metrics() -> None:
    assert calculate_mape(np.array([10.0, 8.0]), np.array([10.0, 10.0])) == pytest.approx(12.5)
    assert error_metrics([(0, 0)]) == {"mae": None, "rmse": None, "mape": None}
    # nothing sold: MAE is defined, MAPE is not
    metrics = error_metrics([(0, 4)])
    assert metrics["mae"] == pytest.approx(4.0)
    assert metrics["mape"] is None


@pytest.fixture
def evaluator():
    d1, d2, d3, d4 = (AS_OF - timedelta(days=n) for n in (4, 3, 2, 1))
    store = InMemoryForecastStore()
    store.save_forecast_results([
        forecast(d1, 10, "ensemble"),
        forecast(d2, 10, "trend-smoothing"),
        forecast(d3, 5, "ensemble"),
        forecast(d4, 0, "ensemble"),
        forecast(AS_OF + timedelta(days=10), 99),  # future, outside the window
        forecast(d1, 50, product_id="P2"),
    ])
    sales = pd.DataFrame([
        {"product_id": "P1", "location_id": "L1", "date": d1, "quantity": 6},
        {"product_id": "P1", "location_id": "L2", "date": d1, "quantity": 4},
        {"product_id": "P1", "location_id": "L1", "date": d2, "quantity": 8},
    ])
    return AccuracyEvaluator(store, DataFrameSalesSource(sales))


def test_evaluate_against_realized_sales(evaluator) -> None:
    record = evaluator.evaluate("P1", window_days=30, as_of=AS_OF)
    # errors: 0 (10 vs 6+4), 0.2 (8 vs 10), 1.0 (nothing sold vs 5); the 0/0 day is skipped
    assert record.accuracy == pytest.approx(1 - 1.2 / 3)
    assert record.contributing_points == 3
    assert record.evaluated_forecasts == 4
    assert record.mae == pytest.approx(7 / 3)
    assert record.rmse == pytest.approx(math.sqrt(29 / 3))
    assert record.by_strategy["trend-smoothing"]["accuracy"] == pytest.approx(0.8)
    assert record.by_strategy["ensemble"]["accuracy"] == pytest.approx(0.5)
    # MAPE only over days that sold: 0% and 25%
    assert record.mape == pytest.approx(12.5)
    assert record.by_strategy["trend-smoothing"] == {
        "accuracy": pytest.approx(0.8), "mae": pytest.approx(2.0),
        "rmse": pytest.approx(2.0), "mape": pytest.approx(25.0),
    }
    ensemble = record.by_strategy["ensemble"]
    assert ensemble["mae"] == pytest.approx(2.5)
    assert ensemble["rmse"] == pytest.approx(math.sqrt(12.5))
    assert ensemble["mape"] == pytest.approx(0.0)


def test_evaluate_without_forecasts(evaluator) -> None:
    record = evaluator.evaluate("P9", as_of=AS_OF)
    assert record.accuracy == 0.0
    assert record.contributing_points == 0
    assert record.mae is None
    assert record.mape is None
    assert record.by_strategy == {}


def test_evaluate_with_no_sales_at_all(evaluator) -> None:
    # P2 predicted 50 but never sold
    assert evaluator.evaluate("P2", as_of=AS_OF).accuracy == 0.0


class BrokenStore:
    def fetch_forecast_results(self, product_id, start_date, end_date):
        raise ConnectionError("forecast store down")


def test_store_errors_yield_zero_accuracy() -> None:
    evaluator = AccuracyEvaluator(BrokenStore(), DataFrameSalesSource(
        pd.DataFrame({"product_id": ["P1"], "date": [AS_OF], "quantity": [1]})))
    record = evaluator.evaluate("P1", as_of=AS_OF)
    assert record.accuracy == 0.0
    assert record.evaluated_forecasts == 0


def test_window_must_be_positive(evaluator) -> None:
    with pytest.raises(ValueError):
        evaluator.evaluate("P1", window_days=0, as_of=AS_OF)
