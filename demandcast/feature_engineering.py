#////////////////////////////////////////////////////////////////////////////////#
# File:         feature_engineering.py                                           #
# Date:         2025-03-20                                                       #
# Description:  Feature vectors for the sequence model and calendar features.   #
#////////////////////////////////////////////////////////////////////////////////#
"""
Feature engineering for the sequence model.

Each observation becomes a vector [quantity, price, discount, weekday, month]
with weekday and month normalized to [0, 1). Windows shorter than the model's
sequence length are left-padded with zero vectors.
"""
import logging
from typing import Sequence, Tuple

import numpy as np
import pandas as pd

from demandcast import config
from demandcast.records import Observation

logger = logging.getLogger(__name__)

N_SEQUENCE_FEATURES = len(config.SEQUENCE_FEATURES)


def add_time_features(df: pd.DataFrame, date_col: str = 'date') -> pd.DataFrame:
    """
    Add normalized calendar features to an observation frame.

    Args:
        df: DataFrame with a date column
        date_col: Column name with date information

    Returns:
        Copy of df with 'weekday' (Sunday=0, divided by 7) and 'month'
        (divided by 12) columns
    """
    result_df = df.copy()
    dates = pd.to_datetime(result_df[date_col])
    # pandas dayofweek is Monday=0, shift so Sunday=0
    result_df['weekday'] = ((dates.dt.dayofweek + 1) % 7) / 7.0
    result_df['month'] = dates.dt.month / 12.0
    return result_df


def build_feature_window(observations: Sequence[Observation], sequence_length: int) -> np.ndarray:
    """
    Build the model input window from the most recent observations.

    Args:
        observations: Date-ordered daily observations
        sequence_length: Number of time steps the model expects

    Returns:
        Array of shape (sequence_length, N_SEQUENCE_FEATURES), zero-padded on
        the left when history is shorter than the window
    """
    if sequence_length < 1:
        raise ValueError(f"sequence_length must be positive, got {sequence_length}")

    window = np.zeros((sequence_length, N_SEQUENCE_FEATURES), dtype=np.float32)
    recent = list(observations)[-sequence_length:]
    if not recent:
        return window

    df = pd.DataFrame({
        'date': [obs.date for obs in recent],
        'quantity': [obs.quantity for obs in recent],
        'price': [obs.unit_price for obs in recent],
        'discount': [obs.discount for obs in recent],
    })
    df = add_time_features(df)
    values = df[config.SEQUENCE_FEATURES].to_numpy(dtype=np.float32)
    window[sequence_length - len(recent):] = values
    if len(recent) < sequence_length:
        logger.debug(f"padded feature window with {sequence_length - len(recent)} zero rows")
    return window


def window_scale(window: np.ndarray) -> Tuple[float, float]:
    """
    Per-window scale factors for quantity and price.

    Padding rows are ignored. Falls back to 1.0 when a column has no positive
    values so the model never divides by zero.
    """
    observed = window[np.any(window != 0, axis=1)]
    if observed.size == 0:
        return 1.0, 1.0
    quantity_scale = float(np.mean(np.abs(observed[:, 0])))
    price_scale = float(np.mean(np.abs(observed[:, 1])))
    return (quantity_scale if quantity_scale > 0 else 1.0,
            price_scale if price_scale > 0 else 1.0)
