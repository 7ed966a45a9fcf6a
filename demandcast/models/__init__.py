#////////////////////////////////////////////////////////////////////////////////#
# File:         __init__.py                                                      #
# Date:         2025-04-03                                                       #
# Description:  Forecasting strategies.                                         #
#////////////////////////////////////////////////////////////////////////////////#

from .base import Estimate, ForecastStrategy, StrategyOutcome
from .classical import DecompositionStrategy, StatisticalBaselineStrategy, TrendSmoothingStrategy
from .lstm import SequenceModelStrategy, get_sequence_scorer
from .ensemble import EnsembleStrategy

__all__ = [
    'Estimate',
    'ForecastStrategy',
    'StrategyOutcome',
    'StatisticalBaselineStrategy',
    'TrendSmoothingStrategy',
    'DecompositionStrategy',
    'SequenceModelStrategy',
    'get_sequence_scorer',
    'EnsembleStrategy',
]
