#////////////////////////////////////////////////////////////////////////////////#
# File:         exceptions.py                                                    #
# Date:         2025-03-14                                                       #
# Description:  Error types raised by the forecasting engine.                   #
#////////////////////////////////////////////////////////////////////////////////#
"""error types for the forecasting engine"""
from typing import List, Optional


class DemandcastError(Exception):
    """base class for engine errors"""


class ForecastValidationError(DemandcastError, ValueError):
    """
    Request rejected before any forecasting work started.

    Args:
        message: Summary of the problem
        errors: Every individual validation problem found
    """

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors) if errors else [message]


class HistoryUnavailableError(DemandcastError):
    """sales history source could not be reached"""


class StrategyError(DemandcastError):
    """a strategy could not produce an estimate"""


class PersistenceError(DemandcastError):
    """forecast sink rejected or could not store results"""


class PersistenceTimeoutError(PersistenceError):
    """forecast sink did not answer in time; whether the write landed is unknown"""
