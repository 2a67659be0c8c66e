"""
aggregator.py
--------------
Final report layer. Consumes RecognitionRows from both recognizers and
reduces them to one total per (month, zip).

Rows are folded into a running dict of exact Decimal sums as they arrive,
so the full row set never has to sit in memory. Two aggregators merge by
plain addition, which makes per-shard partial results combinable in any
order. Rounding to cents happens once, in to_frame().
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Tuple

import pandas as pd

from core.models import RecognitionRow
from core.period_math import month_label
from config.config_loader import get_reporting_config

logger = logging.getLogger(__name__)

REPORT_COLUMNS = ["month", "state", "zip", "recognized_total"]

GroupKey = Tuple[Tuple[int, int], str, str]   # (period, state, zip)


class Aggregator:
    """
    Groups recognized revenue by (month, zip) for one jurisdiction.

    Usage:
        aggregator = Aggregator()
        aggregator.add_rows(monthly_rows)
        aggregator.add_rows(annual_rows)
        report_df = aggregator.to_frame()
    """

    def __init__(
        self,
        jurisdiction: str | None = None,
        target_year: int | None = None,
        currency_places: int | None = None,
        all_years: bool = False,
    ):
        config = get_reporting_config()
        self.jurisdiction = jurisdiction or config["jurisdiction"]
        if all_years:
            self.target_year = None
        else:
            self.target_year = target_year if target_year is not None else config.get("target_year")
        places = currency_places if currency_places is not None else config["currency_places"]
        self.quantum = Decimal(1).scaleb(-places)

        self._totals: Dict[GroupKey, Decimal] = {}
        self.rows_seen = 0
        self.rows_out_of_scope = 0
        self.rows_missing_zip = 0

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def add(self, row: RecognitionRow) -> None:
        """Folds a single row into the running totals."""
        self.rows_seen += 1

        if row.state != self.jurisdiction:
            self.rows_out_of_scope += 1
            return
        if self.target_year is not None and row.period[0] != self.target_year:
            self.rows_out_of_scope += 1
            return
        if row.zip is None or not str(row.zip).strip():
            self.rows_missing_zip += 1
            logger.warning(
                f"Dropping recognition row for payment {row.payment_id} "
                f"(customer {row.customer_id}, {month_label(row.period)}): missing zip."
            )
            return

        key = (row.period, row.state, str(row.zip).strip())
        self._totals[key] = self._totals.get(key, Decimal("0")) + row.recognized_amount

    def add_rows(self, rows: Iterable[RecognitionRow]) -> "Aggregator":
        for row in rows:
            self.add(row)
        return self

    def merge(self, other: "Aggregator") -> "Aggregator":
        """Adds another aggregator's totals and counters into this one."""
        for key, amount in other._totals.items():
            self._totals[key] = self._totals.get(key, Decimal("0")) + amount
        self.rows_seen += other.rows_seen
        self.rows_out_of_scope += other.rows_out_of_scope
        self.rows_missing_zip += other.rows_missing_zip
        return self

    def totals(self) -> Dict[GroupKey, Decimal]:
        """Unrounded totals, keyed by (period, state, zip)."""
        return dict(self._totals)

    def to_frame(self) -> pd.DataFrame:
        """
        Rounded report, one row per (month, zip), ordered by month then zip.
        """
        if not self._totals:
            return pd.DataFrame(columns=REPORT_COLUMNS)

        rows = []
        for (period, state, zip_code) in sorted(self._totals):
            rows.append({
                "month": month_label(period),
                "state": state,
                "zip": zip_code,
                "recognized_total": self._totals[(period, state, zip_code)].quantize(
                    self.quantum, rounding=ROUND_HALF_UP
                ),
            })

        return pd.DataFrame(rows, columns=REPORT_COLUMNS)
