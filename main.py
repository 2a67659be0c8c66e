"""
main.py
--------
Entry point for the Recognized Revenue Engine.

Reads payments and plan definitions, runs the recognition pipeline,
and writes the (month, zip) report to the outputs/ folder.

Usage (from the project root):
    python main.py --payments payments.csv --plans school_plans.csv

    # With optional arguments:
    python main.py --database revenue.db
    python main.py --payments payments.csv --plans plans.csv --target-year 2018
    python main.py --payments payments.csv --plans plans.csv --run-reconciliation
"""

import sys
import os
import argparse
import logging
import pandas as pd
from datetime import datetime

# Ensure project root is on path (for VS Code runs from any working directory)
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from pipeline import RevenueRecognitionPipeline
from core.payment_sources import load_from_sqlite, load_payments_csv, load_plans_csv
from monitoring.reconciliation_monitor import ReconciliationMonitor


# =============================================================================
# LOGGING SETUP
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("main")


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Recognized Revenue Engine: monthly accrual-basis revenue by month and zip."
    )
    parser.add_argument(
        "--payments", type=str, default=None,
        help="Path to payments CSV. Defaults to payments.csv in project root."
    )
    parser.add_argument(
        "--plans", type=str, default=None,
        help="Path to plan definitions CSV. Defaults to school_plans.csv in project root."
    )
    parser.add_argument(
        "--database", type=str, default=None,
        help="SQLite database holding payments and school_plans tables. Overrides the CSV inputs."
    )
    parser.add_argument(
        "--target-year", type=int, default=None,
        help="Reporting year. Defaults to config value (2018)."
    )
    parser.add_argument(
        "--all-years", action="store_true", default=False,
        help="Report every year. Overrides --target-year and the config value."
    )
    parser.add_argument(
        "--state", type=str, default=None,
        help="Reporting jurisdiction. Defaults to config value (NY)."
    )
    parser.add_argument(
        "--workers", type=int, default=None,
        help="Worker threads to shard customers across. Defaults to config value (1)."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory. Defaults to outputs/ in project root."
    )
    parser.add_argument(
        "--run-reconciliation", action="store_true", default=False,
        help="Also run reconciliation checks and output a reconciliation report."
    )
    return parser.parse_args(argv)


# =============================================================================
# MAIN
# =============================================================================

def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    # --- Resolve paths ---
    output_dir = args.output_dir or os.path.join(PROJECT_ROOT, "outputs")
    os.makedirs(output_dir, exist_ok=True)

    # --- Load inputs ---
    if args.database:
        if not os.path.exists(args.database):
            logger.error(f"Database not found: {args.database}")
            return 1
        logger.info(f"Loading payments and plans from: {args.database}")
        payments, plans = load_from_sqlite(args.database)
    else:
        payments_path = args.payments or os.path.join(PROJECT_ROOT, "payments.csv")
        plans_path = args.plans or os.path.join(PROJECT_ROOT, "school_plans.csv")
        for path in (payments_path, plans_path):
            if not os.path.exists(path):
                logger.error(f"Input file not found: {path}")
                return 1
        payments = load_payments_csv(payments_path)
        plans = load_plans_csv(plans_path)

    logger.info(
        f"Loaded {len(payments):,} payments, "
        f"{payments['customer_id'].nunique() if 'customer_id' in payments else 0:,} customers."
    )

    # --- Run pipeline ---
    logger.info("Initializing pipeline...")
    pipeline = RevenueRecognitionPipeline(
        target_year=args.target_year,
        all_years=args.all_years,
        jurisdiction=args.state,
        max_workers=args.workers,
        keep_schedules=args.run_reconciliation,
    )

    logger.info("Running recognition pipeline...")
    report = pipeline.run(payments, plans)

    # --- Output: Report ---
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    report_path = os.path.join(output_dir, f"recognized_revenue_{timestamp}.csv")
    report.to_csv(report_path, index=False)
    logger.info(f"Report saved to: {report_path}")

    if pipeline.rejected:
        rejected_path = os.path.join(output_dir, f"rejected_payments_{timestamp}.csv")
        pd.DataFrame([vars(r) for r in pipeline.rejected]).to_csv(rejected_path, index=False)
        logger.info(f"{len(pipeline.rejected):,} rejected payments saved to: {rejected_path}")

    # --- Print summary ---
    _print_summary(report, pipeline.target_year)

    # --- Optional: Reconciliation ---
    if args.run_reconciliation:
        logger.info("Running reconciliation checks...")
        monitor = ReconciliationMonitor()
        recon = monitor.run(
            pipeline.schedules,
            pipeline.rejected,
            pipeline.aggregator.rows_missing_zip if pipeline.aggregator else 0,
        )

        logger.info(f"Reconciliation Report: {recon.summary}")
        for alert in recon.alerts:
            level = {"CRITICAL": logging.ERROR, "WARNING": logging.WARNING}.get(alert.severity, logging.INFO)
            logger.log(level, f"[{alert.alert_type}] {alert.severity}: {alert.message}")

        if recon.alerts:
            recon_path = os.path.join(output_dir, f"reconciliation_report_{timestamp}.csv")
            recon_rows = [
                {
                    "alert_type": a.alert_type,
                    "severity": a.severity,
                    "metric_name": a.metric_name,
                    "metric_value": a.metric_value,
                    "threshold": a.threshold,
                    "message": a.message,
                    "payment_ids": "|".join(str(x) for x in a.payment_ids),
                    "detected_at": a.detected_at,
                }
                for a in recon.alerts
            ]
            pd.DataFrame(recon_rows).to_csv(recon_path, index=False)
            logger.info(f"Reconciliation report saved to: {recon_path}")
        else:
            logger.info("All payments reconcile.")

    return 0


def _print_summary(df: pd.DataFrame, target_year: int | None):
    """Prints a clean summary table to the console."""
    if df.empty:
        print("\n  No recognized revenue to display.\n")
        return

    print("\n" + "=" * 80)
    print(f"  RECOGNIZED REVENUE SUMMARY ({target_year or 'all years'})")
    print("=" * 80)

    # By month
    print("\n  Recognized Revenue by Month:")
    print("  " + "-" * 60)
    by_month = df.groupby("month")["recognized_total"].apply(lambda s: sum(s))
    for month, total in by_month.items():
        zips = df.loc[df["month"] == month, "zip"].nunique()
        print(f"    {month:10s}  {total:>14,.2f}  ({zips} zip codes)")

    grand_total = sum(df["recognized_total"])
    print("  " + "-" * 60)
    print(f"    {'Total':10s}  {grand_total:>14,.2f}")
    print(f"\n  Distinct zip codes: {df['zip'].nunique():,}")
    print("=" * 80 + "\n")


if __name__ == "__main__":
    sys.exit(main())
