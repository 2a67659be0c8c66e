"""
models.py
----------
Core domain models. These are the typed contracts between engine layers.

- Payment / Plan: Input facts, produced by the PaymentPreparer from raw
  payment and plan tables.

- RecognitionRow: Output of a recognizer. One (customer, month, amount)
  fact. Amounts are exact Decimals; rounding only happens at aggregation.

- RecognitionSchedule: All rows derived from one payment, plus any balance
  held back past the reporting horizon.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional


MONTHLY = "month"
YEARLY = "year"
PLAN_INTERVALS = (MONTHLY, YEARLY)


@dataclass(frozen=True)
class Plan:
    """Subscription plan reference data."""

    plan_id: str
    plan_interval: str               # "month" | "year"


@dataclass
class Payment:
    """
    A single subscription payment, cleaned and typed.

    state/zip may still be None here if the customer never supplied a
    location on any payment. The Aggregator drops such rows.
    """

    id: int
    customer_id: str
    plan_id: str
    payment_at: date
    amount: Decimal
    state: Optional[str] = None
    zip: Optional[str] = None


@dataclass
class RecognitionRow:
    """Revenue recognized from one payment in one calendar month."""

    payment_id: int
    customer_id: str
    period: tuple[int, int]          # (year, month)
    recognized_amount: Decimal
    state: Optional[str] = None
    zip: Optional[str] = None
    kind: str = "prorated"           # "prorated" | "carryover" | "installment" | "final"


@dataclass
class CarryoverState:
    """
    Open carryover chain for one customer.

    remainder is None when no chain is open, which is not the same thing as
    a chain holding a zero balance.
    """

    customer_id: str
    payment_id: Optional[int] = None
    period: Optional[tuple[int, int]] = None
    remainder: Optional[Decimal] = None

    @property
    def is_open(self) -> bool:
        return self.remainder is not None and self.remainder > 0


@dataclass
class RecognitionSchedule:
    """Every recognition row produced for a single payment."""

    payment: Payment
    rows: list[RecognitionRow] = field(default_factory=list)
    deferred_amount: Optional[Decimal] = None   # Held back past the horizon

    @property
    def recognized_total(self) -> Decimal:
        return sum((r.recognized_amount for r in self.rows), Decimal("0"))

    @property
    def accounted_total(self) -> Decimal:
        """Recognized plus deferred. Equals payment.amount for a valid schedule."""
        return self.recognized_total + (self.deferred_amount or Decimal("0"))


@dataclass
class RejectedPayment:
    """A payment excluded from the report, with the reason."""

    payment_id: Optional[int]
    customer_id: Optional[str]
    error_type: str
    message: str
