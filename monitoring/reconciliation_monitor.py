"""
reconciliation_monitor.py
--------------------------
Post-run checks for the recognized revenue engine.

Implements four monitoring dimensions:
    1. Sum invariant: does every payment's recognized (+ deferred) total
       match what was billed?
    2. Rejected records: how much of the batch was excluded as faulty?
    3. Missing location: how many rows were dropped for lack of a zip?
    4. Deferred balances: how much monthly carryover was held past year-end?

Severity scale follows the usual convention: CRITICAL means the report is
wrong, WARNING means it is incomplete, INFO is data hygiene.

All thresholds come from config.yaml.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List

import numpy as np
import pandas as pd

from core.models import RecognitionSchedule, RejectedPayment
from config.config_loader import get_reconciliation_config


@dataclass
class ReconciliationAlert:
    """A single reconciliation finding."""
    alert_type: str                  # "SUM_INVARIANT" | "REJECTED_RECORDS" | "MISSING_LOCATION" | "DEFERRED_BALANCE"
    severity: str                    # "INFO" | "WARNING" | "CRITICAL"
    metric_name: str
    metric_value: float
    threshold: float
    message: str
    payment_ids: List[int] = field(default_factory=list)
    detected_at: str = ""            # ISO timestamp


@dataclass
class ReconciliationReport:
    """Full reconciliation report, one per run."""
    run_timestamp: str
    payments_checked: int
    alerts: List[ReconciliationAlert] = field(default_factory=list)
    summary: dict = field(default_factory=dict)


class ReconciliationMonitor:
    """
    Checks a finished run for lost or invented revenue.

    Usage:
        monitor = ReconciliationMonitor()
        report = monitor.run(pipeline.schedules, pipeline.rejected,
                             pipeline.aggregator.rows_missing_zip)
    """

    def __init__(self):
        self.config = get_reconciliation_config()
        self.sum_tolerance = Decimal(str(self.config["sum_tolerance"]))
        self.rejection_ratio_warning = float(self.config["rejection_ratio_warning"])

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(
        self,
        schedules: List[RecognitionSchedule],
        rejected: List[RejectedPayment],
        rows_missing_zip: int = 0,
    ) -> ReconciliationReport:
        """
        Run the full reconciliation suite.

        Args:
            schedules: Every RecognitionSchedule produced in the run.
            rejected: Payments excluded as faulty.
            rows_missing_zip: Rows the Aggregator dropped for missing zip.

        Returns:
            ReconciliationReport with all alerts and summary metrics.
        """
        now = pd.Timestamp.now().isoformat()
        alerts: List[ReconciliationAlert] = []

        alerts.extend(self._check_sum_invariant(schedules, now))
        alerts.extend(self._check_rejections(len(schedules), rejected, now))
        alerts.extend(self._check_missing_location(rows_missing_zip, now))
        alerts.extend(self._check_deferred(schedules, now))

        billed = sum((s.payment.amount for s in schedules), Decimal("0"))
        recognized = sum((s.recognized_total for s in schedules), Decimal("0"))

        summary = {
            "total_alerts": len(alerts),
            "critical_alerts": sum(1 for a in alerts if a.severity == "CRITICAL"),
            "warning_alerts": sum(1 for a in alerts if a.severity == "WARNING"),
            "info_alerts": sum(1 for a in alerts if a.severity == "INFO"),
            "billed_total": float(billed),
            "recognized_total": float(recognized),
            "rejected_payments": len(rejected),
        }

        return ReconciliationReport(
            run_timestamp=now,
            payments_checked=len(schedules),
            alerts=alerts,
            summary=summary,
        )

    # -------------------------------------------------------------------------
    # INTERNAL: CHECKS
    # -------------------------------------------------------------------------

    def _check_sum_invariant(
        self, schedules: List[RecognitionSchedule], now: str
    ) -> List[ReconciliationAlert]:
        """
        Flags payments whose rows plus deferred balance drift from the billed
        amount by more than the tolerance.
        """
        if not schedules:
            return []

        residuals = [abs(s.payment.amount - s.accounted_total) for s in schedules]
        breaches = [s.payment.id for s, r in zip(schedules, residuals) if r > self.sum_tolerance]
        if not breaches:
            return []

        worst = float(np.max(np.array([float(r) for r in residuals])))
        return [ReconciliationAlert(
            alert_type="SUM_INVARIANT",
            severity="CRITICAL",
            metric_name="max_payment_residual",
            metric_value=round(worst, 6),
            threshold=float(self.sum_tolerance),
            message=(
                f"{len(breaches)} payment(s) do not reconcile to their billed amount. "
                f"Worst residual: {worst:.6f}."
            ),
            payment_ids=breaches,
            detected_at=now,
        )]

    def _check_rejections(
        self, accepted: int, rejected: List[RejectedPayment], now: str
    ) -> List[ReconciliationAlert]:
        """Ratio of excluded payments to all payments that reached the engine."""
        if not rejected:
            return []

        ratio = len(rejected) / (accepted + len(rejected))
        by_type = pd.Series([r.error_type for r in rejected]).value_counts().to_dict()
        severity = "WARNING" if ratio > self.rejection_ratio_warning else "INFO"

        return [ReconciliationAlert(
            alert_type="REJECTED_RECORDS",
            severity=severity,
            metric_name="rejection_ratio",
            metric_value=round(ratio, 4),
            threshold=self.rejection_ratio_warning,
            message=(
                f"{len(rejected)} payment(s) excluded ({ratio:.1%}). "
                f"By type: {by_type}."
            ),
            payment_ids=[r.payment_id for r in rejected if r.payment_id is not None],
            detected_at=now,
        )]

    def _check_missing_location(self, rows_missing_zip: int, now: str) -> List[ReconciliationAlert]:
        if rows_missing_zip == 0:
            return []
        return [ReconciliationAlert(
            alert_type="MISSING_LOCATION",
            severity="WARNING",
            metric_name="rows_missing_zip",
            metric_value=float(rows_missing_zip),
            threshold=0.0,
            message=(
                f"{rows_missing_zip} recognition row(s) dropped: no zip on any payment "
                f"from the customer."
            ),
            detected_at=now,
        )]

    def _check_deferred(
        self, schedules: List[RecognitionSchedule], now: str
    ) -> List[ReconciliationAlert]:
        """Monthly carryover held back at year-end. Expected for December payments."""
        deferred = [s for s in schedules if s.deferred_amount is not None]
        if not deferred:
            return []

        total = sum((s.deferred_amount for s in deferred), Decimal("0"))
        return [ReconciliationAlert(
            alert_type="DEFERRED_BALANCE",
            severity="INFO",
            metric_name="deferred_total",
            metric_value=float(total),
            threshold=0.0,
            message=(
                f"{len(deferred)} payment(s) carry {total:.2f} past year-end; "
                f"not included in this report."
            ),
            payment_ids=[s.payment.id for s in deferred],
            detected_at=now,
        )]
