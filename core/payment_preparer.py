"""
payment_preparer.py
--------------------
Turns raw payment and plan tables into clean, typed facts for the
recognizers.

Raw payment exports often carry location only inside a JSON metadata blob
(payment_data -> source.address_state / source.address_zip), and some
payments omit it entirely. Preparation:

    1. Validate required columns.
    2. Pull state/zip out of the metadata column where the explicit
       columns are absent or empty.
    3. Backfill missing state/zip from the same customer's first payment
       (by id) that has both.
    4. Drop payments outside the reporting jurisdiction.
    5. Convert each row to a Payment. Rows with bad dates or amounts are
       rejected individually and do not stop the batch.
"""

import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List

import pandas as pd

from core.errors import InvalidAmountError, MissingCustomerError, RecognitionError
from core.models import PLAN_INTERVALS, Payment, Plan, RejectedPayment
from core.period_math import parse_date
from config.config_loader import get_input_config, get_reporting_config

logger = logging.getLogger(__name__)


def clean_text(value: Any) -> str | None:
    """
    Normalizes an identifier-like cell to a stripped string, or None.

    Integral floats (what pandas makes of an int column with gaps) lose
    their trailing '.0', so plan 3 and plan 3.0 are the same plan. Every
    pandas null (None, NaN, NaT, pd.NA) comes back as None.
    """
    if value is None or (pd.api.types.is_scalar(value) and pd.isna(value)):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    text = str(value).strip()
    return text or None


def parse_amount(value: Any, payment_id: int | None = None) -> Decimal:
    """Exact Decimal from a raw amount cell. Sign is checked by the recognizers."""
    if isinstance(value, Decimal):
        return value
    if value is None or (pd.api.types.is_scalar(value) and pd.isna(value)):
        raise InvalidAmountError(f"Payment {payment_id} has no amount", payment_id)
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise InvalidAmountError(
            f"Payment {payment_id} has unparseable amount {value!r}", payment_id
        ) from exc


def prepare_plans(plans: pd.DataFrame) -> Dict[str, Plan]:
    """
    Builds the plan lookup from a plan table.

    Raises:
        ValueError: Missing columns, an unknown interval, or one plan id
            listed with two different intervals.
    """
    required_cols = get_input_config()["plan_columns"]
    missing = [c for c in required_cols if c not in plans.columns]
    if missing:
        raise ValueError(f"Missing required plan columns: {missing}")

    lookup: Dict[str, Plan] = {}
    for record in plans.to_dict("records"):
        plan_id = clean_text(record["plan_id"])
        interval = (clean_text(record["plan_interval"]) or "").lower()
        if plan_id is None:
            raise ValueError(f"Plan row without plan_id: {record}")
        if interval not in PLAN_INTERVALS:
            raise ValueError(
                f"Plan {plan_id} has interval {record['plan_interval']!r}; "
                f"expected one of {list(PLAN_INTERVALS)}"
            )
        existing = lookup.get(plan_id)
        if existing is not None and existing.plan_interval != interval:
            raise ValueError(
                f"Plan {plan_id} listed as both '{existing.plan_interval}' and '{interval}'"
            )
        lookup[plan_id] = Plan(plan_id=plan_id, plan_interval=interval)

    return lookup


class PaymentPreparer:
    """
    Cleans a raw payments DataFrame into jurisdiction-filtered Payments.

    Usage:
        preparer = PaymentPreparer()
        payments = preparer.prepare(payments_df)
        preparer.rejected   # per-record failures
    """

    def __init__(self, jurisdiction: str | None = None):
        self.config = get_input_config()
        self.jurisdiction = jurisdiction or get_reporting_config()["jurisdiction"]
        self.rejected: List[RejectedPayment] = []
        self.rows_outside_jurisdiction = 0
        self.rows_backfilled = 0

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def prepare(self, payments: pd.DataFrame) -> List[Payment]:
        df = self._validate(payments)
        df = self._extract_location(df)
        df = self._backfill_location(df)
        df = self._filter_jurisdiction(df)
        return self._to_payments(df)

    # -------------------------------------------------------------------------
    # INTERNAL: STAGES
    # -------------------------------------------------------------------------

    def _validate(self, payments: pd.DataFrame) -> pd.DataFrame:
        required_cols = self.config["payment_columns"]
        missing = [c for c in required_cols if c not in payments.columns]
        if missing:
            raise ValueError(f"Missing required columns: {missing}")

        df = payments.copy()

        ids = pd.to_numeric(df["id"], errors="coerce")
        if ids.isna().any() or (ids % 1 != 0).any():
            raise ValueError("Payment ids must be integers")
        if ids.duplicated().any():
            raise ValueError(f"Duplicate payment ids: {sorted(ids[ids.duplicated()].astype(int).unique())}")

        df["id"] = ids.astype(int)
        df["customer_id"] = self._text_column(df["customer_id"])
        df["plan_id"] = self._text_column(df["plan_id"])
        return df.sort_values("id").reset_index(drop=True)

    def _extract_location(self, df: pd.DataFrame) -> pd.DataFrame:
        """Fills state/zip from the JSON metadata column where they are empty."""
        for col in ("state", "zip"):
            if col not in df.columns:
                df[col] = None
            df[col] = self._text_column(df[col])

        metadata_col = self.config["metadata_column"]
        if metadata_col not in df.columns:
            return df

        metadata = df[metadata_col].map(self._load_metadata)
        from_meta_state = metadata.map(lambda m: clean_text(self._dig(m, self.config["state_path"])))
        from_meta_zip = metadata.map(lambda m: clean_text(self._dig(m, self.config["zip_path"])))

        df["state"] = df["state"].where(df["state"].notna(), from_meta_state)
        df["zip"] = df["zip"].where(df["zip"].notna(), from_meta_zip)
        return df

    def _backfill_location(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Copies state/zip from the customer's first complete payment onto
        payments that are missing them.
        """
        complete = df[df["customer_id"].notna() & df["state"].notna() & df["zip"].notna()]
        reference = complete.drop_duplicates("customer_id").set_index("customer_id")

        needs_fill = df["state"].isna() | df["zip"].isna()
        self.rows_backfilled = int((needs_fill & df["customer_id"].isin(reference.index)).sum())

        df["state"] = df["state"].where(df["state"].notna(), df["customer_id"].map(reference["state"]))
        df["zip"] = df["zip"].where(df["zip"].notna(), df["customer_id"].map(reference["zip"]))

        if self.rows_backfilled:
            logger.info(f"Backfilled location on {self.rows_backfilled:,} payments.")
        return df

    def _filter_jurisdiction(self, df: pd.DataFrame) -> pd.DataFrame:
        in_scope = df["state"] == self.jurisdiction
        self.rows_outside_jurisdiction = int((~in_scope).sum())

        unknown_state = int(df["state"].isna().sum())
        if unknown_state:
            logger.warning(
                f"{unknown_state:,} payments have no state on any customer payment; excluded."
            )
        logger.info(
            f"Jurisdiction filter ({self.jurisdiction}): kept {int(in_scope.sum()):,}, "
            f"dropped {self.rows_outside_jurisdiction:,}."
        )
        return df[in_scope]

    def _to_payments(self, df: pd.DataFrame) -> List[Payment]:
        payments: List[Payment] = []
        for record in df.to_dict("records"):
            payment_id = int(record["id"])
            try:
                if clean_text(record["customer_id"]) is None:
                    raise MissingCustomerError(f"Payment {payment_id} has no customer_id", payment_id)
                payments.append(Payment(
                    id=payment_id,
                    customer_id=record["customer_id"],
                    plan_id=record["plan_id"],
                    payment_at=parse_date(record["payment_at"], payment_id),
                    amount=parse_amount(record["amount"], payment_id),
                    state=clean_text(record["state"]),
                    zip=clean_text(record["zip"]),
                ))
            except RecognitionError as exc:
                logger.warning(f"Rejected payment {payment_id} ({type(exc).__name__}): {exc}")
                self.rejected.append(RejectedPayment(
                    payment_id=payment_id,
                    customer_id=record["customer_id"],
                    error_type=type(exc).__name__,
                    message=str(exc),
                ))
        return payments

    # -------------------------------------------------------------------------
    # INTERNAL: METADATA HELPERS
    # -------------------------------------------------------------------------

    @staticmethod
    def _text_column(series: pd.Series) -> pd.Series:
        # object first, so nullable string columns hold None rather than pd.NA
        return series.astype(object).map(clean_text)

    @staticmethod
    def _load_metadata(raw: Any) -> dict | None:
        if isinstance(raw, dict):
            return raw
        if not isinstance(raw, str) or not raw.strip():
            return None
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug(f"Unreadable payment metadata: {raw[:80]!r}")
            return None
        return parsed if isinstance(parsed, dict) else None

    @staticmethod
    def _dig(metadata: dict | None, path: List[str]) -> Any:
        node: Any = metadata
        for key in path:
            if not isinstance(node, dict):
                return None
            node = node.get(key)
        return node
