#////////////////////////////////////////////////////////////////////////////////#
# File:         persistence.py                                                   #
# Date:         2025-04-07                                                       #
# Description:  Forecast sink and catalog adapters: the in-memory forecast      #
#               store and a static product/location catalog.                    #
#////////////////////////////////////////////////////////////////////////////////#
"""
Persistence and master-data adapters.

The engine writes through a ForecastSink and checks identifiers through a
CatalogLookup. InMemoryForecastStore also serves the accuracy evaluator's
reads, so a single object can back a whole run.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple, Union

import pandas as pd

from demandcast.records import ForecastResult

logger = logging.getLogger(__name__)

RESULT_COLUMNS = [
    "product_id", "location_id", "forecast_date", "forecast_period",
    "predicted_demand", "confidence_lower", "confidence_upper",
    "accuracy", "strategy_used", "created_at",
]


@dataclass
class PersistenceReport:
    """what a sink stored and what it rejected (with the cause)"""
    saved: List[ForecastResult] = field(default_factory=list)
    failed: List[Tuple[ForecastResult, str]] = field(default_factory=list)


class ForecastSink(Protocol):
    def save_forecast_results(self, results: Sequence[ForecastResult]) -> PersistenceReport:
        ...


class ForecastStore(Protocol):
    def fetch_forecast_results(self, product_id: str, start_date: date,
                               end_date: date) -> List[ForecastResult]:
        ...


class CatalogLookup(Protocol):
    """master-data check; each method returns the ids that do not exist"""

    def missing_products(self, product_ids: Iterable[str]) -> List[str]:
        ...

    def missing_locations(self, location_ids: Iterable[str]) -> List[str]:
        ...


class InMemoryForecastStore:
    """
    Thread-safe forecast store kept in process memory.

    Results failing the bounds invariant are rejected individually and
    reported back, never stored.
    """

    def __init__(self):
        self._results: List[ForecastResult] = []
        self._lock = threading.Lock()

    def save_forecast_results(self, results: Sequence[ForecastResult]) -> PersistenceReport:
        report = PersistenceReport()
        for result in results:
            problems = result.violations()
            if problems:
                report.failed.append((result, "; ".join(problems)))
            else:
                report.saved.append(result)
        with self._lock:
            self._results.extend(report.saved)
        logger.info(f"stored {len(report.saved)} forecasts, rejected {len(report.failed)}")
        return report

    def fetch_forecast_results(self, product_id: str, start_date: date,
                               end_date: date) -> List[ForecastResult]:
        with self._lock:
            snapshot = list(self._results)
        return [r for r in snapshot
                if r.product_id == product_id and start_date <= r.forecast_date <= end_date]

    def all_results(self) -> List[ForecastResult]:
        with self._lock:
            return list(self._results)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def to_frame(self) -> pd.DataFrame:
        return results_to_frame(self.all_results())

    def to_csv(self, path: Union[str, Path]) -> None:
        self.to_frame().to_csv(path, index=False)
        logger.info(f"wrote {len(self)} forecasts to {path}")


def results_to_frame(results: Sequence[ForecastResult]) -> pd.DataFrame:
    return pd.DataFrame([r.to_dict() for r in results], columns=RESULT_COLUMNS)


class StaticCatalog:
    """
    Catalog over fixed sets of known ids.

    Passing None for a kind means every id of that kind is accepted.
    """

    def __init__(self, product_ids: Optional[Iterable[str]] = None,
                 location_ids: Optional[Iterable[str]] = None):
        self.product_ids = frozenset(product_ids) if product_ids is not None else None
        self.location_ids = frozenset(location_ids) if location_ids is not None else None

    @classmethod
    def from_transactions(cls, transactions: pd.DataFrame) -> "StaticCatalog":
        locations = transactions["location_id"].dropna().astype(str) \
            if "location_id" in transactions.columns else []
        return cls(transactions["product_id"].astype(str), locations)

    def missing_products(self, product_ids: Iterable[str]) -> List[str]:
        if self.product_ids is None:
            return []
        return sorted(p for p in product_ids if p not in self.product_ids)

    def missing_locations(self, location_ids: Iterable[str]) -> List[str]:
        if self.location_ids is None:
            return []
        return sorted(loc for loc in location_ids if loc not in self.location_ids)
