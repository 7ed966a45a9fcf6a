#////////////////////////////////////////////////////////////////////////////////#
# File:         pipeline.py                                                      #
# Date:         2025-04-10                                                       #
# Description:  Forecast orchestration: request validation, strategy fallback  #
#               chains, batch assembly and persistence.                          #
#////////////////////////////////////////////////////////////////////////////////#

"""
Forecast orchestration.

For every (product, location) pair of a request the orchestrator builds the
daily history, picks a fallback chain from the requested strategy and the
amount of history, and walks the chain until a strategy produces a result
that satisfies the bounds invariant. Pairs run on a thread pool; the batch is
buffered and persisted once, after every pair has finished.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError, as_completed
from datetime import date, timedelta
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

from tqdm import tqdm

from demandcast import config
from demandcast.data_loader import HistoricalSeriesBuilder, SalesHistorySource
from demandcast.evaluators.accuracy import AccuracyEvaluator
from demandcast.exceptions import (
    ForecastValidationError, HistoryUnavailableError, PersistenceError, PersistenceTimeoutError,
    StrategyError,
)
from demandcast.models.base import ForecastStrategy
from demandcast.models.classical import (
    DecompositionStrategy, StatisticalBaselineStrategy, TrendSmoothingStrategy,
)
from demandcast.models.ensemble import EnsembleStrategy
from demandcast.models.lstm import SequenceModelStrategy
from demandcast.persistence import CatalogLookup, ForecastSink, PersistenceReport
from demandcast.records import (
    ForecastBatch, ForecastFailure, ForecastRequest, ForecastResult, Observation, StrategyName,
)
from demandcast.seasonality import CalendarAdjuster, HolidayCalendar, SeasonalProfile

logger = logging.getLogger(__name__)

FALLBACK_CHAINS: Dict[StrategyName, Tuple[StrategyName, ...]] = {
    StrategyName.BASELINE: (StrategyName.BASELINE,),
    StrategyName.TREND: (StrategyName.TREND, StrategyName.BASELINE),
    StrategyName.SEQUENCE: (StrategyName.SEQUENCE, StrategyName.TREND, StrategyName.BASELINE),
    StrategyName.ENSEMBLE: (StrategyName.ENSEMBLE, StrategyName.BASELINE),
}

# the sequence model sees up to 30 steps, so those paths read a longer history
LOOKBACK_DAYS: Dict[StrategyName, int] = {
    StrategyName.BASELINE: config.DEFAULT_LOOKBACK_DAYS,
    StrategyName.TREND: config.DEFAULT_LOOKBACK_DAYS,
    StrategyName.SEQUENCE: config.ENHANCED_LOOKBACK_DAYS,
    StrategyName.ENSEMBLE: config.ENHANCED_LOOKBACK_DAYS,
}

PairOutcome = Union[ForecastResult, ForecastFailure]


def default_strategies() -> Dict[StrategyName, ForecastStrategy]:
    """one instance per strategy; the ensemble reuses the sequence and trend instances"""
    sequence = SequenceModelStrategy()
    trend = TrendSmoothingStrategy()
    return {
        StrategyName.BASELINE: StatisticalBaselineStrategy(),
        StrategyName.TREND: trend,
        StrategyName.SEQUENCE: sequence,
        StrategyName.ENSEMBLE: EnsembleStrategy([sequence, trend, DecompositionStrategy()]),
    }


def _log_late_write(future) -> None:
    """outcome of a sink call that outlived the persist timeout"""
    error = future.exception()
    if error is not None:
        logger.error(f"late persistence call failed: {error}")
        return
    report = future.result()
    logger.warning(f"late persistence call finished: stored {len(report.saved)}, "
                   f"rejected {len(report.failed)}")


def fallback_chain(requested: StrategyName, n_observations: int,
                   min_points: int = config.MIN_HISTORY_POINTS) -> Tuple[StrategyName, ...]:
    """strategies to try, in order, for a request and the history length"""
    if n_observations < min_points:
        return (StrategyName.BASELINE,)
    return FALLBACK_CHAINS[requested]


class ForecastOrchestrator:
    """
    Turns validated forecast requests into batches of forecast results.

    Args:
        sales_source: Where sales history comes from
        sink: Where finished batches are written (None keeps them in memory only)
        catalog: Master-data lookup for product and location ids (None skips the check)
        evaluator: Accuracy evaluator; defaults to one over the sink when the
            sink can also read forecasts back
        strategies: Strategy instances keyed by StrategyName
        profile: Seasonal factor table
        calendar: Holiday calendar
        max_workers: Threads for per-pair work
        fetch_timeout: Seconds before a history fetch counts as no history
        persist_timeout: Seconds to wait for the sink
        show_progress: Show a tqdm progress bar over pairs
    """

    def __init__(
        self,
        sales_source: SalesHistorySource,
        sink: Optional[ForecastSink] = None,
        catalog: Optional[CatalogLookup] = None,
        evaluator: Optional[AccuracyEvaluator] = None,
        strategies: Optional[Mapping[StrategyName, ForecastStrategy]] = None,
        profile: Optional[SeasonalProfile] = None,
        calendar: Optional[HolidayCalendar] = None,
        max_workers: int = config.MAX_WORKERS,
        fetch_timeout: Optional[float] = config.FETCH_TIMEOUT_SECONDS,
        persist_timeout: Optional[float] = config.PERSIST_TIMEOUT_SECONDS,
        show_progress: bool = False
    ):
        self.sales_source = sales_source
        self.sink = sink
        self.catalog = catalog
        if evaluator is None and sink is not None and hasattr(sink, "fetch_forecast_results"):
            evaluator = AccuracyEvaluator(sink, sales_source)
        self.evaluator = evaluator

        self.strategies = dict(strategies) if strategies is not None else default_strategies()
        missing = [name.value for name in StrategyName if name not in self.strategies]
        if missing:
            raise ValueError(f"no strategy instance for: {missing}")

        self.adjuster = CalendarAdjuster(profile, calendar)
        self.max_workers = max_workers
        self.persist_timeout = persist_timeout
        self.show_progress = show_progress
        self.history = HistoricalSeriesBuilder(sales_source, fetch_timeout=fetch_timeout,
                                               max_workers=max_workers)
        self._persist_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="forecast-persist")
        # one event per running batch; cancel() sets all of them
        self._active_events: Set[threading.Event] = set()
        self._events_lock = threading.Lock()

    # request validation

    def validate(self, request: ForecastRequest) -> None:
        """
        Check request structure and master data.

        Raises:
            ForecastValidationError: listing every problem found
        """
        errors = request.validation_errors()
        if not errors and self.catalog is not None:
            missing_products = self.catalog.missing_products(sorted(request.product_ids))
            if missing_products:
                errors.append(f"unknown product ids: {missing_products}")
            if request.location_ids:
                missing_locations = self.catalog.missing_locations(sorted(request.location_ids))
                if missing_locations:
                    errors.append(f"unknown location ids: {missing_locations}")
        if errors:
            raise ForecastValidationError("invalid forecast request: " + "; ".join(errors), errors)

    # single pair

    def forecast_pair(self, product_id: str, location_id: Optional[str], request: ForecastRequest,
                      as_of: Optional[date] = None,
                      adjuster: Optional[CalendarAdjuster] = None) -> ForecastResult:
        """
        Forecast one (product, location) pair.

        Raises:
            HistoryUnavailableError: the sales source failed
            StrategyError: every strategy in the chain failed
        """
        as_of = as_of or date.today()
        adjuster = adjuster or self.adjuster.with_flags(request.include_seasonality, request.include_holidays)
        series = self.history.build(product_id, location_id,
                                    lookback_days=LOOKBACK_DAYS[request.strategy], as_of=as_of)
        forecast_date = as_of + timedelta(days=request.horizon_days)

        chain = fallback_chain(request.strategy, len(series))
        if chain[0] != request.strategy:
            logger.info(f"{product_id}/{location_id}: {len(series)} observations "
                        f"(< {config.MIN_HISTORY_POINTS}), using {chain[0].value}")
        return self._run_chain(product_id, location_id, series, forecast_date, chain, request, adjuster)

    def _run_chain(self, product_id: str, location_id: Optional[str], series: Sequence[Observation],
                   forecast_date: date, chain: Sequence[StrategyName], request: ForecastRequest,
                   adjuster: CalendarAdjuster) -> ForecastResult:
        reasons = []
        for position, strategy_name in enumerate(chain):
            strategy = self.strategies[strategy_name]
            outcome = strategy.estimate(series, forecast_date, adjuster)
            if outcome.ok:
                result = ForecastResult(
                    product_id=product_id,
                    location_id=location_id,
                    forecast_date=forecast_date,
                    predicted_demand=outcome.estimate.point,
                    confidence_lower=outcome.estimate.lower,
                    confidence_upper=outcome.estimate.upper,
                    strategy_used=outcome.strategy,
                    forecast_period=request.period,
                )
                problems = result.violations()
                if not problems:
                    return result
                reason = f"invalid result: {'; '.join(problems)}"
            else:
                reason = outcome.reason

            reasons.append(f"{strategy.name}: {reason}")
            if position + 1 < len(chain):
                logger.info(f"{product_id}/{location_id}: {strategy.name} failed ({reason}), "
                            f"falling back to {self.strategies[chain[position + 1]].name}")
        raise StrategyError(f"no strategy produced a valid forecast: {reasons}")

    def _run_pair(self, product_id: str, location_id: Optional[str], request: ForecastRequest,
                  as_of: date, adjuster: CalendarAdjuster, cancel_event: threading.Event) -> PairOutcome:
        if cancel_event.is_set():
            return ForecastFailure(product_id, location_id, "batch cancelled", "cancelled")
        try:
            return self.forecast_pair(product_id, location_id, request, as_of, adjuster)
        except HistoryUnavailableError as e:
            return ForecastFailure(product_id, location_id, str(e), "history")
        except StrategyError as e:
            logger.error(f"{product_id}/{location_id}: {e}")
            return ForecastFailure(product_id, location_id, str(e), "strategy")

    # batches

    def generate(self, request: ForecastRequest, as_of: Optional[date] = None,
                 evaluate_accuracy: bool = False,
                 accuracy_window_days: int = config.DEFAULT_ACCURACY_WINDOW_DAYS,
                 cancel_event: Optional[threading.Event] = None) -> ForecastBatch:
        """
        Forecast every pair of a request and persist the batch.

        Args:
            request: The forecast request
            as_of: Reference date; forecasts are for as_of + horizon_days
            evaluate_accuracy: Attach a backtest AccuracyRecord per product
            accuracy_window_days: Backtest window for evaluate_accuracy
            cancel_event: External cancellation signal (cancel() also works)

        Returns:
            ForecastBatch with results in request pair order

        Raises:
            ForecastValidationError: before any history is read
        """
        self.validate(request)
        if evaluate_accuracy and accuracy_window_days < 1:
            raise ForecastValidationError(
                f"invalid forecast request: accuracy window must be positive, got {accuracy_window_days}")
        as_of = as_of or date.today()
        if cancel_event is None:
            cancel_event = threading.Event()
        with self._events_lock:
            self._active_events.add(cancel_event)
        try:
            return self._generate(request, as_of, evaluate_accuracy, accuracy_window_days, cancel_event)
        finally:
            with self._events_lock:
                self._active_events.discard(cancel_event)

    def _generate(self, request, as_of, evaluate_accuracy, accuracy_window_days, cancel_event) -> ForecastBatch:
        adjuster = self.adjuster.with_flags(request.include_seasonality, request.include_holidays)
        pairs = request.pairs()
        logger.info(f"forecasting {len(pairs)} pairs with {request.strategy.value}, "
                    f"horizon {request.horizon_days} days from {as_of}")

        outcomes = self._collect(pairs, request, as_of, adjuster, cancel_event)
        batch = ForecastBatch()
        for pair in pairs:
            outcome = outcomes[pair]
            if isinstance(outcome, ForecastResult):
                batch.results.append(outcome)
            else:
                batch.failures.append(outcome)

        if cancel_event.is_set():
            batch.cancelled = True
            logger.warning(f"batch cancelled after {len(batch.results)} of {len(pairs)} forecasts, "
                           f"nothing persisted")
            return batch

        saved, persistence_failures = self._persist(batch.results)
        batch.results = saved
        batch.failures.extend(persistence_failures)
        batch.persisted = self.sink is not None and not persistence_failures

        if evaluate_accuracy:
            self._attach_accuracy(batch, sorted(request.product_ids), accuracy_window_days, as_of)
        logger.info(f"batch done: {len(batch.results)} forecasts, {len(batch.failures)} failures")
        return batch

    def _collect(self, pairs, request, as_of, adjuster, cancel_event) -> Dict[tuple, PairOutcome]:
        outcomes: Dict[tuple, PairOutcome] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="forecast") as executor:
            future_to_pair = {
                executor.submit(self._run_pair, product_id, location_id, request, as_of,
                                adjuster, cancel_event): (product_id, location_id)
                for product_id, location_id in pairs
            }
            completed = as_completed(future_to_pair)
            if self.show_progress:
                completed = tqdm(completed, total=len(future_to_pair), desc="Forecasting")
            for future in completed:
                product_id, location_id = future_to_pair[future]
                if future.cancelled():
                    outcomes[(product_id, location_id)] = ForecastFailure(
                        product_id, location_id, "batch cancelled", "cancelled")
                    continue
                try:
                    outcomes[(product_id, location_id)] = future.result()
                except Exception as e:
                    logger.error(f"{product_id}/{location_id}: unexpected error: {e}")
                    outcomes[(product_id, location_id)] = ForecastFailure(
                        product_id, location_id, f"{type(e).__name__}: {e}", "strategy")
                if cancel_event.is_set():
                    for pending in future_to_pair:
                        pending.cancel()
        return outcomes

    def save_batch(self, results: Sequence[ForecastResult]) -> PersistenceReport:
        """
        Write results through the sink, waiting at most persist_timeout.

        Raises:
            PersistenceTimeoutError: the sink did not answer in time; the write
                may still complete and its outcome is logged when it does
            PersistenceError: the sink raised
        """
        future = self._persist_executor.submit(self.sink.save_forecast_results, list(results))
        try:
            return future.result(timeout=self.persist_timeout)
        except FutureTimeoutError as e:
            if future.cancel():
                raise PersistenceTimeoutError(
                    f"persistence timed out after {self.persist_timeout}s before the write started") from e
            future.add_done_callback(_log_late_write)
            raise PersistenceTimeoutError(
                f"persistence timed out after {self.persist_timeout}s, write still in flight") from e
        except Exception as e:
            raise PersistenceError(f"{type(e).__name__}: {e}") from e

    def _persist(self, results: List[ForecastResult]) -> Tuple[List[ForecastResult], List[ForecastFailure]]:
        if self.sink is None or not results:
            return results, []

        try:
            report = self.save_batch(results)
        except PersistenceTimeoutError as e:
            logger.warning(f"persisting {len(results)} forecasts: {e}")
            return [], [ForecastFailure(r.product_id, r.location_id, str(e), "persistence-timeout")
                        for r in results]
        except PersistenceError as e:
            logger.error(f"persisting {len(results)} forecasts failed: {e}")
            return [], [ForecastFailure(r.product_id, r.location_id, str(e), "persistence") for r in results]

        failed_ids = {id(result) for result, _ in report.failed}
        failures = [ForecastFailure(result.product_id, result.location_id, cause, "persistence")
                    for result, cause in report.failed]
        for failure in failures:
            logger.error(f"{failure.product_id}/{failure.location_id}: not persisted: {failure.cause}")
        return [r for r in results if id(r) not in failed_ids], failures

    def _attach_accuracy(self, batch: ForecastBatch, product_ids: List[str],
                         window_days: int, as_of: date) -> None:
        if self.evaluator is None:
            logger.warning("accuracy requested but no evaluator is configured")
            return
        for product_id in product_ids:
            batch.accuracy[product_id] = self.evaluator.evaluate(product_id, window_days, as_of)

    # lifecycle

    def cancel(self) -> None:
        """stop every running batch; nothing from them is persisted"""
        with self._events_lock:
            for event in self._active_events:
                event.set()

    def close(self) -> None:
        self.history.close()
        self._persist_executor.shutdown(wait=False)

    def __enter__(self) -> "ForecastOrchestrator":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
