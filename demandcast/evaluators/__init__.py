#////////////////////////////////////////////////////////////////////////////////#
# File:         __init__.py                                                      #
# Date:         2025-04-08                                                       #
# Description:  Evaluators package initialization for forecast accuracy.       #
#////////////////////////////////////////////////////////////////////////////////#

from .accuracy import (
    AccuracyEvaluator,
    calculate_mae,
    calculate_mape,
    calculate_rmse,
    error_metrics,
    relative_errors,
    score_pairs,
)

__all__ = [
    'AccuracyEvaluator',
    'calculate_mae',
    'calculate_mape',
    'calculate_rmse',
    'error_metrics',
    'relative_errors',
    'score_pairs',
]
