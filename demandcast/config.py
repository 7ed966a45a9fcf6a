#////////////////////////////////////////////////////////////////////////////////#
# File:         config.py                                                        #
# Date:         2025-03-05                                                       #
# Description:  Configuration settings for the demand forecasting engine.       #
#////////////////////////////////////////////////////////////////////////////////#




"""
Configuration settings for the demand forecasting engine.
"""
import os
from pathlib import Path

# Project directory structure
PROJECT_ROOT = Path(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
MODEL_DIR = PROJECT_ROOT / "trained_models"
RESULTS_DIR = PROJECT_ROOT / "results"

# Data sufficiency
MIN_HISTORY_POINTS = 7  # below this the baseline strategy is forced
DEFAULT_LOOKBACK_DAYS = 60
ENHANCED_LOOKBACK_DAYS = 90  # sequence/ensemble requests look further back

# Request limits
MAX_HORIZON_DAYS = 365
MAX_PRODUCTS_PER_REQUEST = 1000

# Baseline (moving average) settings
BASELINE_EMPTY_MEAN = 1.0  # demand assumed when there is no history at all
BASELINE_BOUND_FRACTION = 0.30

# Trend smoothing settings
SMOOTHING_ALPHA = 0.3
TREND_WINDOW = 7  # most recent points used for the least-squares slope
TREND_BOUND_FRACTION = 0.25
SLOPE_DENOMINATOR_EPS = 1e-9

# Decomposition settings
DECOMPOSITION_BOUND_FRACTION = 0.20

# Sequence model settings
ENHANCED_SEQUENCE_LENGTH = 30
BASIC_SEQUENCE_LENGTH = 7
SEQUENCE_FEATURES = ["quantity", "price", "discount", "weekday", "month"]
QUANTILE_LEVELS = [0.1, 0.5, 0.9]  # lower bound, point, upper bound heads
DEFAULT_HIDDEN_DIM = 64
DEFAULT_NUM_LAYERS = 2
DEFAULT_DROPOUT = 0.2
USE_ATTENTION = True
RANDOM_SEED = 42

# Ensemble settings - renormalized over whichever members succeed
ENSEMBLE_WEIGHTS = {
    "sequence-model": 0.4,
    "trend-smoothing": 0.4,
    "decomposition": 0.2,
}

# Month of year -> multiplicative demand factor (apparel calendar)
SEASONAL_FACTORS = {
    1: 0.8,   # post-holiday low
    2: 0.7,   # winter clearance
    3: 1.1,   # spring collections
    4: 1.2,   # spring peak
    5: 1.0,
    6: 0.9,   # early summer
    7: 0.8,   # summer sales
    8: 1.1,   # back-to-school
    9: 1.2,   # fall collections
    10: 1.3,  # fall peak
    11: 1.4,  # holiday shopping
    12: 1.2,  # holiday peak
}

# Recurring holiday windows. "anchor" is either a fixed (month, day) or a rule
# name understood by seasonality.resolve_anchor.
HOLIDAY_RULES = [
    {"name": "Black Friday", "anchor": "black_friday", "duration_days": 4,
     "impact": 2.5, "category": "promotional"},
    {"name": "Cyber Monday", "anchor": "cyber_monday", "duration_days": 1,
     "impact": 2.2, "category": "promotional"},
    {"name": "Christmas", "anchor": (12, 25), "duration_days": 7,
     "impact": 1.8, "category": "holiday"},
    {"name": "New Year", "anchor": (1, 1), "duration_days": 14,
     "impact": 0.3, "category": "post_holiday"},
    {"name": "Valentines Day", "anchor": (2, 14), "duration_days": 3,
     "impact": 1.4, "category": "seasonal"},
    {"name": "Back to School", "anchor": (8, 15), "duration_days": 14,
     "impact": 1.6, "category": "seasonal"},
]

# Infrastructure settings
FETCH_TIMEOUT_SECONDS = 10.0
PERSIST_TIMEOUT_SECONDS = 30.0
MAX_WORKERS = 8

# Evaluation settings
DEFAULT_ACCURACY_WINDOW_DAYS = 30
