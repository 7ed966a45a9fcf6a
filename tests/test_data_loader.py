import threading
from datetime import date, timedelta

import numpy as np
import pandas as pd
import pytest

from demandcast.data_loader import (
    DataFrameSalesSource, HistoricalSeriesBuilder, bucket_daily, coerce_date, to_frame,
)
from demandcast.exceptions import HistoryUnavailableError
from demandcast.records import Observation

from conftest import AS_OF


def test_bucket_daily_sums_same_day_rows() -> None:
    day = date(2025, 3, 1)
    raw = [
        Observation(day + timedelta(days=1), 4, unit_price=5.0),
        Observation(day, 2, unit_price=10.0, discount=0.1),
        Observation(day, 6, unit_price=20.0, discount=0.3),
    ]
    series = bucket_daily(raw)
    assert [obs.date for obs in series] == [day, day + timedelta(days=1)]
    assert series[0].quantity == 8
    # quantity-weighted price: (2*10 + 6*20) / 8
    assert series[0].unit_price == pytest.approx(17.5)
    assert series[0].discount == pytest.approx(0.2)


def test_bucket_daily_leaves_gaps_and_drops_non_finite() -> None:
    raw = [
        Observation(date(2025, 3, 1), 3),
        Observation(date(2025, 3, 4), 5),
        Observation(date(2025, 3, 2), float("nan")),
    ]
    series = bucket_daily(raw)
    assert [obs.date for obs in series] == [date(2025, 3, 1), date(2025, 3, 4)]


def test_bucket_daily_zero_quantity_day_uses_plain_mean_price() -> None:
    raw = [Observation(date(2025, 3, 1), 0, unit_price=4.0), Observation(date(2025, 3, 1), 0, unit_price=6.0)]
    assert bucket_daily(raw)[0].unit_price == pytest.approx(5.0)


def test_bucket_daily_empty() -> None:
    assert bucket_daily([]) == []


def test_source_filters_product_location_and_dates(sales_frame) -> None:
    source = DataFrameSalesSource(sales_frame)
    rows = source.fetch_observations("P3", "L2", AS_OF - timedelta(days=9), AS_OF)
    assert len(rows) == 10
    assert source.fetch_observations("P3", None, AS_OF, AS_OF)[0].quantity == 20
    assert len(source.fetch_observations("P3", None, AS_OF, AS_OF)) == 2
    assert source.fetch_observations("NOPE", None, AS_OF, AS_OF) == []
    assert source.product_ids() == ["P1", "P2", "P3"]
    assert source.location_ids() == ["L1", "L2"]


def test_source_requires_core_columns() -> None:
    with pytest.raises(ValueError, match="missing columns"):
        DataFrameSalesSource(pd.DataFrame({"product_id": ["P1"], "date": ["2025-01-01"]}))


def test_builder_aggregates_locations_within_lookback(sales_frame) -> None:
    with HistoricalSeriesBuilder(DataFrameSalesSource(sales_frame)) as builder:
        series = builder.build("P3", None, lookback_days=9, as_of=AS_OF)
    assert len(series) == 10
    assert all(obs.quantity == 40 for obs in series)


def test_builder_returns_empty_series_for_unknown_product(sales_frame) -> None:
    with HistoricalSeriesBuilder(DataFrameSalesSource(sales_frame)) as builder:
        assert builder.build("P404", as_of=AS_OF) == []


class BlockingSource:
    def __init__(self):
        self.release = threading.Event()

    def fetch_observations(self, product_id, location_id, start_date, end_date):
        self.release.wait(5)
        return [Observation(end_date, 1)]


def test_builder_timeout_yields_empty_series() -> None:
    source = BlockingSource()
    builder = HistoricalSeriesBuilder(source, fetch_timeout=0.05)
    try:
        assert builder.build("P1", as_of=AS_OF) == []
    finally:
        source.release.set()
        builder.close()


class HangingProductSource(BlockingSource):
    """only HANG blocks; every other product answers at once"""

    def fetch_observations(self, product_id, location_id, start_date, end_date):
        if product_id == "HANG":
            return super().fetch_observations(product_id, location_id, start_date, end_date)
        return [Observation(end_date, 3)]


def test_hung_fetches_do_not_starve_later_fetches() -> None:
    source = HangingProductSource()
    builder = HistoricalSeriesBuilder(source, fetch_timeout=0.05, max_workers=1)
    try:
        assert builder.build("HANG", as_of=AS_OF) == []
        # the only worker is still stuck on HANG; the pool has been replaced
        series = builder.build("P1", as_of=AS_OF)
        assert [obs.quantity for obs in series] == [3]
    finally:
        source.release.set()
        builder.close()


class BrokenSource:
    def fetch_observations(self, product_id, location_id, start_date, end_date):
        raise ConnectionError("database down")


def test_builder_wraps_source_errors() -> None:
    with HistoricalSeriesBuilder(BrokenSource(), fetch_timeout=None) as builder:
        with pytest.raises(HistoryUnavailableError, match="database down"):
            builder.build("P1", as_of=AS_OF)


def test_to_frame_and_coerce_date() -> None:
    df = to_frame([Observation(date(2025, 1, 1), 3)])
    assert list(df.columns) == ["date", "quantity", "unit_price", "discount"]
    assert to_frame([]).empty
    assert coerce_date("2025-02-03") == date(2025, 2, 3)
    assert coerce_date(pd.Timestamp("2025-02-03 10:00")) == date(2025, 2, 3)
    assert coerce_date(None) is None
    assert np.isclose(df["quantity"].iloc[0], 3)
