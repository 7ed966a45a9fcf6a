#////////////////////////////////////////////////////////////////////////////////#
# File:         accuracy.py                                                      #
# Date:         2025-04-08                                                       #
# Description:  Backtest accuracy of stored forecasts against realized sales.   #
#////////////////////////////////////////////////////////////////////////////////#

"""
Accuracy metrics for forecast backtesting.

Each stored forecast inside the window is paired with the realized quantity
on its forecast date (summed across locations, 0 when nothing sold). Pairs
where both values are 0 carry no information and are skipped. Per pair

    error = |actual - predicted| / max(actual, predicted, 1)

and accuracy = max(0, 1 - mean(error)), or 0 when no pair contributes.
"""

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from sktime.performance_metrics.forecasting import (
    mean_absolute_error,
    mean_absolute_percentage_error,
    mean_squared_error,
)

from demandcast import config
from demandcast.data_loader import SalesHistorySource, bucket_daily
from demandcast.persistence import ForecastStore
from demandcast.records import AccuracyRecord, ForecastResult

logger = logging.getLogger(__name__)


def calculate_mae(actuals: np.ndarray, predictions: np.ndarray) -> float:
    """calculate mae using sktime"""
    return float(mean_absolute_error(actuals, predictions))


def calculate_rmse(actuals: np.ndarray, predictions: np.ndarray) -> float:
    """calculate rmse using sktime"""
    return float(np.sqrt(mean_squared_error(actuals, predictions)))


def calculate_mape(actuals: np.ndarray, predictions: np.ndarray) -> float:
    """
    calculate mean absolute percentage error (mape) using sktime.

    returns:
        MAPE value (as percentage)
    """
    return float(mean_absolute_percentage_error(actuals, predictions, symmetric=False)) * 100


def error_metrics(pairs: Sequence[Tuple[float, float]]) -> Dict[str, Optional[float]]:
    """
    MAE, RMSE and MAPE of (actual, predicted) pairs, skipping 0/0 pairs.

    MAPE only uses days with a non-zero actual; each metric is None when no
    pair qualifies.
    """
    metrics = {"mae": None, "rmse": None, "mape": None}
    informative = [(a, p) for a, p in pairs if a != 0 or p != 0]
    if not informative:
        return metrics
    values = np.asarray(informative, dtype=float)
    metrics["mae"] = calculate_mae(values[:, 0], values[:, 1])
    metrics["rmse"] = calculate_rmse(values[:, 0], values[:, 1])
    sold = values[values[:, 0] != 0]
    if len(sold):
        metrics["mape"] = calculate_mape(sold[:, 0], sold[:, 1])
    return metrics


def relative_errors(actuals: np.ndarray, predictions: np.ndarray) -> np.ndarray:
    """|a - p| / max(a, p, 1) per pair"""
    denominators = np.maximum(np.maximum(actuals, predictions), 1.0)
    return np.abs(actuals - predictions) / denominators


def score_pairs(pairs: Sequence[Tuple[float, float]]) -> Tuple[float, int]:
    """
    Accuracy of (actual, predicted) pairs.

    Returns:
        (accuracy, number of contributing pairs)
    """
    if not pairs:
        return 0.0, 0
    values = np.asarray(pairs, dtype=float).reshape(-1, 2)
    actuals, predictions = values[:, 0], values[:, 1]
    contributing = (actuals != 0) | (predictions != 0)
    if not contributing.any():
        return 0.0, 0
    errors = relative_errors(actuals[contributing], predictions[contributing])
    return max(0.0, 1.0 - float(np.mean(errors))), int(contributing.sum())


class AccuracyEvaluator:
    """
    Scores a product's recent forecasts against what actually sold.

    Args:
        forecast_store: Source of persisted ForecastResults
        sales_source: Source of realized sales
    """

    def __init__(self, forecast_store: ForecastStore, sales_source: SalesHistorySource):
        self.forecast_store = forecast_store
        self.sales_source = sales_source

    def evaluate(self, product_id: str, window_days: int = config.DEFAULT_ACCURACY_WINDOW_DAYS,
                 as_of: Optional[date] = None) -> AccuracyRecord:
        if window_days < 1:
            raise ValueError(f"window_days must be positive, got {window_days}")
        as_of = as_of or date.today()
        start_date = as_of - timedelta(days=window_days)

        try:
            forecasts = self.forecast_store.fetch_forecast_results(product_id, start_date, as_of)
            realized = bucket_daily(
                self.sales_source.fetch_observations(product_id, None, start_date, as_of) or []
            )
        except Exception as e:
            logger.error(f"accuracy evaluation for {product_id} failed, reporting 0: {e}")
            return AccuracyRecord(product_id=product_id, window_days=window_days, accuracy=0.0,
                                  contributing_points=0, evaluated_forecasts=0)

        actual_by_day = {obs.date: obs.quantity for obs in realized}
        return self._score(product_id, window_days, forecasts, actual_by_day)

    def _score(self, product_id: str, window_days: int, forecasts: List[ForecastResult],
               actual_by_day: Dict[date, float]) -> AccuracyRecord:
        pairs = []
        pairs_by_strategy = defaultdict(list)
        for forecast in forecasts:
            pair = (actual_by_day.get(forecast.forecast_date, 0.0), float(forecast.predicted_demand))
            pairs.append(pair)
            pairs_by_strategy[forecast.strategy_used].append(pair)

        accuracy, contributing = score_pairs(pairs)
        by_strategy = {
            name: {"accuracy": score_pairs(group)[0], **error_metrics(group)}
            for name, group in sorted(pairs_by_strategy.items())
        }

        logger.debug(f"{product_id}: accuracy {accuracy:.3f} over {contributing} of {len(forecasts)} forecasts")
        return AccuracyRecord(
            product_id=product_id,
            window_days=window_days,
            accuracy=accuracy,
            contributing_points=contributing,
            evaluated_forecasts=len(forecasts),
            by_strategy=by_strategy,
            **error_metrics(pairs),
        )
