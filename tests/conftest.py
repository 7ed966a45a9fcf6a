import sys
from datetime import date, timedelta
from pathlib import Path

import pandas as pd
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from demandcast.records import Observation  # noqa: E402
from demandcast.seasonality import CalendarAdjuster  # noqa: E402


AS_OF = date(2025, 5, 1)


def daily_series(quantities, start=date(2025, 3, 1), unit_price=10.0):
    """one observation per consecutive day"""
    return [
        Observation(date=start + timedelta(days=i), quantity=float(q), unit_price=unit_price)
        for i, q in enumerate(quantities)
    ]


def sales_rows(product_id, quantities, end=AS_OF, location_id="L1", unit_price=10.0):
    """transaction rows ending on `end`, one per day"""
    start = end - timedelta(days=len(quantities) - 1)
    return [
        {"product_id": product_id, "location_id": location_id, "date": start + timedelta(days=i),
         "quantity": q, "unit_price": unit_price, "discount": 0.0}
        for i, q in enumerate(quantities)
    ]


class FixedScorer:
    """stand-in for the sequence network; records the windows it scores"""

    def __init__(self, sequence_length, output=(10.0, 8.0, 12.0)):
        self.sequence_length = sequence_length
        self.output = output
        self.windows = []

    def score(self, window):
        self.windows.append(window)
        return self.output


class FailingScorer:
    def __init__(self, sequence_length):
        self.sequence_length = sequence_length

    def score(self, window):
        raise RuntimeError("inference backend unavailable")


@pytest.fixture
def no_calendar() -> CalendarAdjuster:
    return CalendarAdjuster(include_seasonality=False, include_holidays=False)


@pytest.fixture
def fixed_scorers():
    scorers = {}

    def provider(sequence_length):
        if sequence_length not in scorers:
            scorers[sequence_length] = FixedScorer(sequence_length)
        return scorers[sequence_length]

    provider.scorers = scorers
    return provider


@pytest.fixture
def sales_frame() -> pd.DataFrame:
    rows = []
    rows += sales_rows("P1", [10, 12, 9, 11, 10, 13, 10, 11, 12, 10, 9, 11, 10, 12])
    rows += sales_rows("P2", [5, 6, 4])
    rows += sales_rows("P3", [20] * 40)
    rows += sales_rows("P3", [20] * 40, location_id="L2")
    return pd.DataFrame(rows)
