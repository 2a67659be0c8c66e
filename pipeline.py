"""
pipeline.py
------------
Main orchestration layer. Wires together:
    1. PaymentPreparer        →  typed, jurisdiction-filtered Payments
    2. Monthly / Annual recognizers  →  RecognitionRows per payment
    3. Aggregator             →  (month, zip) recognized revenue report

This is the single entry point for running the engine. Everything else
is internal machinery.

Usage:
    from pipeline import RevenueRecognitionPipeline

    pipeline = RevenueRecognitionPipeline(target_year=2018)
    report_df = pipeline.run(payments_df, plans_df)
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import pandas as pd

from config.config_loader import load_config
from core.aggregator import Aggregator
from core.errors import UnknownPlanError
from core.models import MONTHLY, Payment, Plan, RecognitionSchedule, RejectedPayment
from core.payment_preparer import PaymentPreparer, prepare_plans
from recognizers.annual_recognizer import AnnualRecognizer
from recognizers.base_recognizer import group_by_customer
from recognizers.monthly_recognizer import MonthlyRecognizer

logger = logging.getLogger(__name__)

CustomerHistory = Tuple[str, List[Payment]]


@dataclass
class ShardResult:
    """What one worker hands back: its partial report and bookkeeping."""
    aggregator: Aggregator
    schedules: List[RecognitionSchedule] = field(default_factory=list)
    rejected: List[RejectedPayment] = field(default_factory=list)


class RevenueRecognitionPipeline:
    """
    End-to-end recognized revenue pipeline.

    Orchestrates preparation → recognition → aggregation without exposing
    internal objects to callers. Per-record failures are collected in
    self.rejected rather than raised.
    """

    def __init__(
        self,
        target_year: int | None = None,
        jurisdiction: str | None = None,
        max_workers: int | None = None,
        keep_schedules: bool = False,
        all_years: bool = False,
    ):
        """
        Args:
            target_year: Override the reporting year from config. None
                keeps the configured year (a null there reports every year).
            jurisdiction: Override the reporting state from config.
            max_workers: Worker threads to shard customers across.
            keep_schedules: Retain every RecognitionSchedule in
                self.schedules (needed for reconciliation checks).
            all_years: Report every year, ignoring target_year and config.
        """
        self.config = load_config()
        reporting = self.config["reporting"]
        if all_years:
            self.target_year = None
        else:
            self.target_year = target_year if target_year is not None else reporting.get("target_year")
        self.jurisdiction = jurisdiction or reporting["jurisdiction"]
        self.max_workers = max(1, max_workers or self.config["recognition"]["max_workers"])
        self.keep_schedules = keep_schedules

        self.rejected: List[RejectedPayment] = []
        self.schedules: List[RecognitionSchedule] = []
        self.aggregator: Aggregator | None = None

        logger.info(
            f"Pipeline initialized. Jurisdiction: {self.jurisdiction}. "
            f"Target year: {self.target_year or 'all'}. Workers: {self.max_workers}."
        )

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(self, payments: pd.DataFrame, plans: pd.DataFrame) -> pd.DataFrame:
        """
        Run the full pipeline.

        Args:
            payments: Raw payments DataFrame (see PaymentPreparer).
            plans: Plan table with plan_id, plan_interval.

        Returns:
            DataFrame with columns month, state, zip, recognized_total,
            ordered by month.
        """
        self.rejected = []
        self.schedules = []
        logger.info(f"Pipeline starting. Input: {len(payments):,} payments, {len(plans):,} plans.")

        # --- Stage 1: Preparation ---
        plan_lookup = prepare_plans(plans)
        preparer = PaymentPreparer(jurisdiction=self.jurisdiction)
        prepared = preparer.prepare(payments)
        self.rejected.extend(preparer.rejected)
        logger.info(f"Stage 1 complete. Payments in scope: {len(prepared):,}.")

        # --- Stage 2: Recognition, sharded by customer ---
        histories = self._known_plan_histories(prepared, plan_lookup)
        results = self._run_shards(histories, plan_lookup)
        logger.info(f"Stage 2 complete. Customers: {len(histories):,}. Shards: {len(results):,}.")

        # --- Stage 3: Merge and report ---
        aggregator = self._new_aggregator()
        for result in results:
            aggregator.merge(result.aggregator)
            self.rejected.extend(result.rejected)
            if self.keep_schedules:
                self.schedules.extend(result.schedules)
        self.aggregator = aggregator

        output_df = aggregator.to_frame()
        logger.info(
            f"Pipeline complete. Output rows: {len(output_df):,}. "
            f"Rejected payments: {len(self.rejected):,}. "
            f"Rows dropped for missing zip: {aggregator.rows_missing_zip:,}."
        )
        return output_df

    def run_recognition_only(self, payments: pd.DataFrame, plans: pd.DataFrame) -> List[RecognitionSchedule]:
        """
        Runs the full pipeline and returns every RecognitionSchedule instead
        of the report. The aggregate is still built and left in
        self.aggregator. Useful for auditing a single customer's rows.
        """
        keep = self.keep_schedules
        self.keep_schedules = True
        try:
            self.run(payments, plans)
        finally:
            self.keep_schedules = keep
        return self.schedules

    # -------------------------------------------------------------------------
    # INTERNAL: SPLITTING
    # -------------------------------------------------------------------------

    def _known_plan_histories(
        self, payments: List[Payment], plans: Dict[str, Plan]
    ) -> List[CustomerHistory]:
        """Rejects payments on unknown plans and groups the rest by customer."""
        known: List[Payment] = []
        for payment in payments:
            if payment.plan_id not in plans:
                exc = UnknownPlanError(
                    f"Payment {payment.id} references unknown plan {payment.plan_id!r}",
                    payment.id,
                )
                logger.warning(f"Rejected payment {payment.id} (UnknownPlanError): {exc}")
                self.rejected.append(RejectedPayment(
                    payment_id=payment.id,
                    customer_id=payment.customer_id,
                    error_type="UnknownPlanError",
                    message=str(exc),
                ))
                continue
            known.append(payment)
        return list(group_by_customer(known))

    # -------------------------------------------------------------------------
    # INTERNAL: SHARDING
    # -------------------------------------------------------------------------

    def _run_shards(
        self, histories: List[CustomerHistory], plans: Dict[str, Plan]
    ) -> List[ShardResult]:
        if self.max_workers == 1 or len(histories) <= 1:
            return [self._process_shard(histories, plans)]

        # Round-robin over sorted customers keeps shard contents stable run to run.
        shards = [histories[i::self.max_workers] for i in range(self.max_workers)]
        shards = [s for s in shards if s]

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(lambda shard: self._process_shard(shard, plans), shards))

    def _process_shard(self, histories: List[CustomerHistory], plans: Dict[str, Plan]) -> ShardResult:
        """Recognizes one shard of customers into its own Aggregator."""
        monthly = MonthlyRecognizer(plans)
        annual = AnnualRecognizer(plans)
        result = ShardResult(aggregator=self._new_aggregator())

        for _, history in histories:
            monthly_history = [p for p in history if plans[p.plan_id].plan_interval == MONTHLY]
            annual_history = [p for p in history if plans[p.plan_id].plan_interval != MONTHLY]

            for recognizer, subset in ((monthly, monthly_history), (annual, annual_history)):
                for schedule in recognizer.schedules_for_customer(subset):
                    result.aggregator.add_rows(schedule.rows)
                    if self.keep_schedules:
                        result.schedules.append(schedule)

        result.rejected = monthly.rejected + annual.rejected
        return result

    def _new_aggregator(self) -> Aggregator:
        return Aggregator(
            jurisdiction=self.jurisdiction,
            target_year=self.target_year,
            all_years=self.target_year is None,
        )
