#////////////////////////////////////////////////////////////////////////////////#
# File:         generate_forecasts.py                                            #
# Date:         2025-04-12                                                       #
#////////////////////////////////////////////////////////////////////////////////#
#!/usr/bin/env python3
"""
Generate demand forecasts from a sales transaction CSV.

Main Steps:
1. Load sales transactions into a DataFrameSalesSource
2. Derive the product/location catalog from the same table
3. Run the forecast orchestrator for the requested products and locations
4. Write the forecasts as CSV and a JSON summary next to it
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.append(str(PROJECT_ROOT))

from demandcast import config
from demandcast.data_loader import DataFrameSalesSource, coerce_date
from demandcast.exceptions import ForecastValidationError
from demandcast.models.lstm import warm_up_scorers
from demandcast.persistence import InMemoryForecastStore, StaticCatalog
from demandcast.pipeline import ForecastOrchestrator
from demandcast.records import ForecastPeriod, ForecastRequest, StrategyName
from demandcast.utils import create_directory, save_json, set_random_seed

logger = logging.getLogger(__name__)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments for forecast generation.

    Returns:
        argparse.Namespace: Parsed command-line arguments
    """
    parser = argparse.ArgumentParser(
        description="Generate demand forecasts from sales history",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        "--sales-csv",
        type=str,
        required=True,
        help="CSV with product_id, location_id, date, quantity[, unit_price, discount]"
    )
    parser.add_argument(
        "--products",
        type=str,
        nargs="+",
        default=None,
        help="Product ids to forecast (default: every product in the CSV)"
    )
    parser.add_argument(
        "--locations",
        type=str,
        nargs="+",
        default=None,
        help="Location ids; one forecast per product/location pair"
    )
    parser.add_argument(
        "--horizon-days",
        type=int,
        default=30,
        help="Days ahead of the as-of date"
    )
    parser.add_argument(
        "--period",
        type=str,
        choices=[p.value for p in ForecastPeriod],
        default=ForecastPeriod.DAILY.value,
        help="Reporting period stored on each forecast"
    )
    parser.add_argument(
        "--strategy",
        type=str,
        choices=[s.value for s in StrategyName],
        default=StrategyName.ENSEMBLE.value,
        help="Forecasting strategy"
    )
    parser.add_argument(
        "--as-of",
        type=str,
        default=None,
        help="Reference date YYYY-MM-DD (default: today)"
    )
    parser.add_argument(
        "--output",
        type=str,
        default=str(config.RESULTS_DIR / "forecasts.csv"),
        help="Output CSV path; the summary is written alongside as JSON"
    )
    parser.add_argument(
        "--accuracy-days",
        type=int,
        default=None,
        help="Backtest window in days; enables accuracy evaluation"
    )
    parser.add_argument(
        "--no-holidays",
        action="store_true",
        help="Disable holiday adjustment"
    )
    parser.add_argument(
        "--no-seasonality",
        action="store_true",
        help="Disable month-of-year adjustment"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=config.MAX_WORKERS,
        help="Worker threads"
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main workflow for forecast generation.
    """
    args = parse_arguments(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s | %(name)s | %(levelname)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    set_random_seed(config.RANDOM_SEED)

    source = DataFrameSalesSource.from_csv(args.sales_csv)
    catalog = StaticCatalog.from_transactions(source.transactions)
    store = InMemoryForecastStore()

    try:
        request = ForecastRequest.from_dict({
            "product_ids": args.products or source.product_ids(),
            "location_ids": args.locations,
            "period": args.period,
            "horizon_days": args.horizon_days,
            "strategy": args.strategy,
            "include_seasonality": not args.no_seasonality,
            "include_holidays": not args.no_holidays,
        })
    except ForecastValidationError as e:
        logger.error(str(e))
        return 2

    if request.strategy in (StrategyName.SEQUENCE, StrategyName.ENSEMBLE):
        warm_up_scorers()

    with ForecastOrchestrator(source, sink=store, catalog=catalog,
                              max_workers=args.workers, show_progress=True) as orchestrator:
        try:
            batch = orchestrator.generate(
                request,
                as_of=coerce_date(args.as_of),
                evaluate_accuracy=args.accuracy_days is not None,
                accuracy_window_days=args.accuracy_days or config.DEFAULT_ACCURACY_WINDOW_DAYS,
            )
        except ForecastValidationError as e:
            logger.error(str(e))
            return 2

    output_path = Path(args.output)
    create_directory(output_path.parent)
    store.to_csv(output_path)

    summary = batch.summary()
    summary["failures"] = [
        {"product_id": f.product_id, "location_id": f.location_id, "stage": f.stage, "cause": f.cause}
        for f in batch.failures
    ]
    summary["accuracy"] = {
        product_id: {
            "accuracy": record.accuracy,
            "contributing_points": record.contributing_points,
            "mae": record.mae,
            "rmse": record.rmse,
            "mape": record.mape,
            "by_strategy": record.by_strategy,
        }
        for product_id, record in batch.accuracy.items()
    }
    summary_path = output_path.with_suffix(".json")
    save_json(summary, summary_path)
    logger.info(f"wrote {len(batch.results)} forecasts to {output_path}, summary to {summary_path}")

    return 0 if batch.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
