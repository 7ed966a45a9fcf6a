#////////////////////////////////////////////////////////////////////////////////#
# File:         classical.py                                                     #
# Date:         2025-03-20                                                       #
# Description:  Statistical demand strategies: moving-average baseline,          #
#               exponential smoothing with linear trend, and a trend/weekday    #
#               decomposition. Smoothing runs through statsforecast.            #
#////////////////////////////////////////////////////////////////////////////////#
"""statistical forecasting strategies"""
import logging
from datetime import date
from typing import Sequence, Tuple

import numpy as np
import pandas as pd

from statsforecast import StatsForecast
from statsforecast.models import SimpleExponentialSmoothing as SF_SES

from demandcast import config
from demandcast.data_loader import to_frame
from demandcast.exceptions import StrategyError
from demandcast.models.base import ForecastStrategy, banded_estimate
from demandcast.records import (
    BASELINE_LABEL, DECOMPOSITION_LABEL, TREND_LABEL, Observation,
)

logger = logging.getLogger(__name__)


class BaseForecaster:
    """thin statsforecast wrapper for a single daily series"""

    def __init__(self, model_instance):
        self.model = model_instance
        self.sf = None
        self.fitted = False
        self._last_train_data = None
        self._freq = 'D'

    def fit(self, y: np.ndarray, freq: str = 'D') -> 'BaseForecaster':
        # statsforecast wants long format with unique_id/ds/y
        df = pd.DataFrame({
            'unique_id': 1,
            'ds': pd.date_range(start='2020-01-01', periods=len(y), freq=freq),
            'y': np.asarray(y, dtype=float)
        })
        self._last_train_data = df
        self._freq = freq

        self.sf = StatsForecast(models=[self.model], freq=freq, n_jobs=1)
        self.sf.fit(df)
        self.fitted = True
        return self

    def predict(self, h: int = 1) -> np.ndarray:
        if not self.fitted:
            raise ValueError("model must be fitted before prediction")

        forecasts_df = self.sf.forecast(df=self._last_train_data, h=h)
        # forecast column is named after the model alias
        forecast_cols = [col for col in forecasts_df.columns if col not in ['unique_id', 'ds']]
        if not forecast_cols:
            raise ValueError("no forecast column found")
        return forecasts_df[forecast_cols[0]].to_numpy(dtype=float)


class SimpleExponentialSmoothing(BaseForecaster):
    """ses with a fixed smoothing constant"""

    def __init__(self, alpha: float = config.SMOOTHING_ALPHA):
        super().__init__(SF_SES(alpha=alpha))


def _finite_quantities(series: Sequence[Observation]) -> np.ndarray:
    quantities = np.array([obs.quantity for obs in series], dtype=float)
    if quantities.size == 0:
        raise StrategyError("no observations")
    if not np.all(np.isfinite(quantities)):
        raise StrategyError("non-finite quantity in history")
    return quantities


def ols_fit(x: np.ndarray, y: np.ndarray, eps: float = config.SLOPE_DENOMINATOR_EPS) -> Tuple[float, float]:
    """
    Ordinary least squares line through (x, y).

    Returns (slope, intercept); slope is 0 with fewer than two points or when
    the denominator n*sum(x^2) - sum(x)^2 is ~0.
    """
    n = len(x)
    if n == 0:
        return 0.0, 0.0
    sum_x = float(np.sum(x))
    sum_y = float(np.sum(y))
    if n < 2:
        return 0.0, sum_y / n
    denominator = n * float(np.sum(x * x)) - sum_x * sum_x
    if abs(denominator) < eps:
        return 0.0, sum_y / n
    slope = (n * float(np.sum(x * y)) - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n
    return slope, intercept


def recent_trend(quantities: np.ndarray, window: int = config.TREND_WINDOW) -> float:
    """least-squares slope over the last `window` points (index as x)"""
    recent = quantities[-window:]
    slope, _ = ols_fit(np.arange(len(recent), dtype=float), recent)
    return slope


class StatisticalBaselineStrategy(ForecastStrategy):
    """
    Moving-average baseline, the strategy of last resort.

    Mean of the available quantities (1 when there is none) times the
    seasonal factor of the forecast date, with a +/-30% band.
    """

    name = BASELINE_LABEL

    def __init__(self, bound_fraction: float = config.BASELINE_BOUND_FRACTION,
                 empty_mean: float = config.BASELINE_EMPTY_MEAN):
        self.bound_fraction = bound_fraction
        self.empty_mean = empty_mean

    def _estimate(self, series, forecast_date, adjuster):
        quantities = np.array([obs.quantity for obs in series], dtype=float)
        quantities = quantities[np.isfinite(quantities)]
        mean_demand = float(np.mean(quantities)) if quantities.size else self.empty_mean

        seasonal = adjuster.seasonal(forecast_date)
        if not np.isfinite(seasonal) or seasonal <= 0:
            seasonal = 1.0
        return banded_estimate(mean_demand * seasonal, self.bound_fraction)


class TrendSmoothingStrategy(ForecastStrategy):
    """
    Exponentially smoothed level plus the recent linear trend.

    Level: simple exponential smoothing with alpha=0.3 over all quantities.
    Trend: OLS slope over the last 7 points. The sum is scaled by the seasonal
    and holiday factors of the forecast date, floored at 0 and given a +/-25%
    band.
    """

    name = TREND_LABEL

    def __init__(self, alpha: float = config.SMOOTHING_ALPHA,
                 trend_window: int = config.TREND_WINDOW,
                 bound_fraction: float = config.TREND_BOUND_FRACTION):
        if not 0 < alpha <= 1:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha = alpha
        self.trend_window = trend_window
        self.bound_fraction = bound_fraction

    def smoothed_level(self, quantities: np.ndarray) -> float:
        level = SimpleExponentialSmoothing(alpha=self.alpha).fit(quantities).predict(h=1)[0]
        if not np.isfinite(level):
            raise StrategyError("smoothing produced a non-finite level")
        return float(level)

    def _estimate(self, series, forecast_date, adjuster):
        quantities = _finite_quantities(series)
        level = self.smoothed_level(quantities)
        slope = recent_trend(quantities, self.trend_window)

        forecast = (level + slope) * adjuster.seasonal(forecast_date) * adjuster.holiday(forecast_date)
        if not np.isfinite(forecast):
            raise StrategyError(f"degenerate trend forecast: level={level}, slope={slope}")
        estimate = banded_estimate(max(0.0, forecast), self.bound_fraction)
        logger.debug(f"trend smoothing level={level:.3f} slope={slope:.3f} -> {estimate.point}")
        return estimate


class DecompositionStrategy(ForecastStrategy):
    """
    Additive trend line times a weekday profile.

    The trend is an OLS line over calendar days since the first observation,
    projected to the forecast date. The weekday index is the mean quantity on
    the forecast date's weekday over the overall mean (1.0 when that weekday
    was never observed). Seasonal and holiday factors apply on top; +/-20%
    band.
    """

    name = DECOMPOSITION_LABEL

    def __init__(self, bound_fraction: float = config.DECOMPOSITION_BOUND_FRACTION):
        self.bound_fraction = bound_fraction

    def weekday_index(self, df: pd.DataFrame, forecast_date: date) -> float:
        overall = df['quantity'].mean()
        if not overall > 0:
            return 1.0
        weekdays = pd.to_datetime(df['date']).dt.dayofweek
        profile = df.groupby(weekdays)['quantity'].mean() / overall
        return float(profile.get(forecast_date.weekday(), 1.0))

    def _estimate(self, series, forecast_date, adjuster):
        _finite_quantities(series)
        df = to_frame(series)
        first_day = df['date'].iloc[0]
        offsets = np.array([(day - first_day).days for day in df['date']], dtype=float)
        quantities = df['quantity'].to_numpy(dtype=float)

        slope, intercept = ols_fit(offsets, quantities)
        trend_value = intercept + slope * float((forecast_date - first_day).days)
        forecast = (trend_value * self.weekday_index(df, forecast_date)
                    * adjuster.seasonal(forecast_date) * adjuster.holiday(forecast_date))
        if not np.isfinite(forecast):
            raise StrategyError("degenerate decomposition forecast")
        return banded_estimate(max(0.0, forecast), self.bound_fraction)
