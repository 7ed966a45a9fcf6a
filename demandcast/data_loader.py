#////////////////////////////////////////////////////////////////////////////////#
# File:         data_loader.py                                                   #
# Date:         2025-03-12                                                       #
# Description:  Sales history loading: source adapters and the daily series    #
#               builder.                                                         #
#////////////////////////////////////////////////////////////////////////////////#
"""
Sales history loading.

HistoricalSeriesBuilder pulls raw sales rows from a sales source and buckets
them into one Observation per calendar day. Gaps are left as gaps.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Set, Union

import numpy as np
import pandas as pd

from demandcast import config
from demandcast.exceptions import HistoryUnavailableError
from demandcast.records import Observation

logger = logging.getLogger(__name__)

TRANSACTION_COLUMNS = ["product_id", "location_id", "date", "quantity", "unit_price", "discount"]


class SalesHistorySource(Protocol):
    """external sales store; returns an empty sequence when there is no data"""

    def fetch_observations(self, product_id: str, location_id: Optional[str],
                           start_date: date, end_date: date) -> Sequence[Observation]:
        ...


class DataFrameSalesSource:
    """
    Sales source backed by a pandas transaction table.

    Expected columns: product_id, location_id, date, quantity and optionally
    unit_price and discount. A location of None means all locations.
    """

    def __init__(self, transactions: pd.DataFrame):
        missing = [col for col in ("product_id", "date", "quantity") if col not in transactions.columns]
        if missing:
            raise ValueError(f"transaction table is missing columns: {missing}")
        df = transactions.copy()
        if "location_id" not in df.columns:
            df["location_id"] = None
        if "unit_price" not in df.columns:
            df["unit_price"] = 0.0
        if "discount" not in df.columns:
            df["discount"] = 0.0
        df["date"] = pd.to_datetime(df["date"]).dt.date
        df["product_id"] = df["product_id"].astype(str)
        df["location_id"] = df["location_id"].where(df["location_id"].isna(), df["location_id"].astype(str))
        df[["unit_price", "discount"]] = df[["unit_price", "discount"]].fillna(0.0)
        self._transactions = df[TRANSACTION_COLUMNS].sort_values("date", kind="stable").reset_index(drop=True)

    @classmethod
    def from_csv(cls, path: Union[str, Path]) -> "DataFrameSalesSource":
        logger.info(f"loading sales transactions from {path}")
        return cls(pd.read_csv(path))

    @property
    def transactions(self) -> pd.DataFrame:
        return self._transactions.copy()

    def product_ids(self) -> List[str]:
        return sorted(self._transactions["product_id"].unique())

    def location_ids(self) -> List[str]:
        return sorted(self._transactions["location_id"].dropna().unique())

    def fetch_observations(self, product_id: str, location_id: Optional[str],
                           start_date: date, end_date: date) -> List[Observation]:
        df = self._transactions
        mask = (df["product_id"] == product_id) & (df["date"] >= start_date) & (df["date"] <= end_date)
        if location_id is not None:
            mask &= df["location_id"] == location_id
        rows = df.loc[mask]
        return [
            Observation(date=row.date, quantity=float(row.quantity),
                        unit_price=float(row.unit_price), discount=float(row.discount))
            for row in rows.itertuples(index=False)
        ]


def bucket_daily(observations: Sequence[Observation]) -> List[Observation]:
    """
    Sum same-day rows into a single Observation per calendar day.

    Quantity is summed, unit price is the quantity-weighted mean (plain mean
    when the day's quantity is zero) and discount is averaged. Rows with a
    non-finite quantity are dropped.

    Args:
        observations: Raw sales rows in any order

    Returns:
        Observations ordered by date, one per day that had a sale
    """
    if not observations:
        return []

    df = pd.DataFrame({
        "date": [pd.Timestamp(obs.date).date() for obs in observations],
        "quantity": [obs.quantity for obs in observations],
        "unit_price": [obs.unit_price for obs in observations],
        "discount": [obs.discount for obs in observations],
    })
    df[["quantity", "unit_price", "discount"]] = df[["quantity", "unit_price", "discount"]].apply(
        pd.to_numeric, errors="coerce"
    )
    finite = np.isfinite(df["quantity"].to_numpy(dtype=float))
    if not finite.all():
        logger.warning(f"dropping {int((~finite).sum())} sales rows with non-finite quantity")
        df = df.loc[finite]
    if df.empty:
        return []
    df[["unit_price", "discount"]] = df[["unit_price", "discount"]].fillna(0.0)
    df["revenue"] = df["quantity"] * df["unit_price"]

    daily = df.groupby("date", sort=True).agg(
        quantity=("quantity", "sum"),
        revenue=("revenue", "sum"),
        mean_price=("unit_price", "mean"),
        discount=("discount", "mean"),
    )
    weighted = daily["revenue"] / daily["quantity"].where(daily["quantity"] != 0)
    daily["unit_price"] = weighted.fillna(daily["mean_price"])

    return [
        Observation(date=day, quantity=float(row.quantity),
                    unit_price=float(row.unit_price), discount=float(row.discount))
        for day, row in daily.iterrows()
    ]


def to_frame(observations: Sequence[Observation]) -> pd.DataFrame:
    """observations as a date-ordered DataFrame"""
    return pd.DataFrame(
        {
            "date": [obs.date for obs in observations],
            "quantity": [obs.quantity for obs in observations],
            "unit_price": [obs.unit_price for obs in observations],
            "discount": [obs.discount for obs in observations],
        },
        columns=["date", "quantity", "unit_price", "discount"],
    )


class HistoricalSeriesBuilder:
    """
    Builds the daily sales series for a product (and optional location).

    A fetch that runs longer than fetch_timeout is treated as no history so
    the caller falls back to the baseline. Any other source error is raised
    as HistoryUnavailableError.

    A running fetch cannot be interrupted, so a source that hangs keeps its
    worker thread until it returns. Once every worker is held by such a fetch
    the pool is replaced and the stuck threads are left to finish on their own.
    """

    def __init__(self, source: SalesHistorySource,
                 fetch_timeout: Optional[float] = config.FETCH_TIMEOUT_SECONDS,
                 max_workers: int = config.MAX_WORKERS):
        self.source = source
        self.fetch_timeout = fetch_timeout
        self.max_workers = max_workers
        self._lock = threading.Lock()
        self._stalled: Set = set()
        self._executor = self._new_executor() if fetch_timeout is not None else None

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="history-fetch")

    def build(self, product_id: str, location_id: Optional[str] = None,
              lookback_days: int = config.DEFAULT_LOOKBACK_DAYS,
              as_of: Optional[date] = None) -> List[Observation]:
        as_of = as_of or date.today()
        start_date = as_of - timedelta(days=lookback_days)

        try:
            raw = self._fetch(product_id, location_id, start_date, as_of)
        except FutureTimeoutError:
            logger.warning(
                f"history fetch for {product_id}/{location_id} exceeded {self.fetch_timeout}s, "
                f"treating as insufficient history"
            )
            return []
        except Exception as e:
            logger.error(f"history fetch failed for {product_id}/{location_id}: {e}")
            raise HistoryUnavailableError(f"sales history unavailable for {product_id}/{location_id}: {e}") from e

        series = bucket_daily(raw or [])
        logger.debug(f"built {len(series)} daily observations for {product_id}/{location_id} "
                     f"({start_date} to {as_of})")
        return series

    def _fetch(self, product_id, location_id, start_date, end_date):
        if self._executor is None:
            return self.source.fetch_observations(product_id, location_id, start_date, end_date)
        with self._lock:
            executor = self._executor
            future = executor.submit(self.source.fetch_observations,
                                     product_id, location_id, start_date, end_date)
        try:
            return future.result(timeout=self.fetch_timeout)
        except FutureTimeoutError:
            if not future.cancel():
                self._note_stalled(executor, future)
            raise

    def _note_stalled(self, executor: ThreadPoolExecutor, future) -> None:
        with self._lock:
            if executor is not self._executor:
                return
            self._stalled = {f for f in self._stalled if not f.done()}
            self._stalled.add(future)
            if len(self._stalled) >= self.max_workers:
                logger.warning(f"{len(self._stalled)} history fetches still running past the timeout, "
                               f"replacing the fetch pool")
                executor.shutdown(wait=False)
                self._executor = self._new_executor()
                self._stalled = set()

    def close(self) -> None:
        if self._executor is not None:
            with self._lock:
                self._executor.shutdown(wait=False)

    def __enter__(self) -> "HistoricalSeriesBuilder":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def coerce_date(value: Union[str, date, datetime, pd.Timestamp, None]) -> Optional[date]:
    """accept strings, datetimes and timestamps where a date is expected"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return pd.Timestamp(value).date()
