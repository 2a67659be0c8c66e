"""
base_recognizer.py
-------------------
Abstract base class for the monthly and annual recognizers.

Plan lookup, per-record validation and rejection bookkeeping live here.

Concrete recognizers only need to implement:
    - recognize_payment(): turn one payment into a RecognitionSchedule
    - _walk_history(): iterate a customer's validated, ordered payments
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal, localcontext
from itertools import groupby
from typing import Dict, Iterable, Iterator, List, Optional

from core.errors import (
    InvalidAmountError,
    MissingCustomerError,
    PlanIntervalMismatchError,
    RecognitionError,
    UnknownPlanError,
)
from core.models import Payment, Plan, RecognitionRow, RecognitionSchedule, RejectedPayment
from config.config_loader import get_recognition_config

logger = logging.getLogger(__name__)

# Wide enough to hold any amount minus a 28-digit quotient exactly.
EXACT_PRECISION = 64


def payment_order(payment: Payment) -> tuple:
    """Stable ordering key: customer, then payment date, then id."""
    return (str(payment.customer_id), payment.payment_at, payment.id)


def group_by_customer(payments: Iterable[Payment]) -> Iterator[tuple[str, List[Payment]]]:
    """
    Yields (customer_id, ordered payment history) pairs.

    Customers come out in sorted order and each history is sorted by
    (payment_at, id), so downstream iteration is deterministic no matter
    how the input was ordered.
    """
    ordered = sorted(payments, key=payment_order)
    for customer_id, history in groupby(ordered, key=lambda p: str(p.customer_id)):
        yield customer_id, list(history)


class BaseRecognizer(ABC):
    """
    Abstract base for recognizers.

    Subclasses declare plan_interval and implement recognize_payment() and
    _walk_history(). This class handles validation, customer grouping and
    collection of rejected payments.
    """

    plan_interval: str = ""

    def __init__(self, plans: Dict[str, Plan]):
        self.plans = plans
        self.config = get_recognition_config()
        self.rejected: List[RejectedPayment] = []

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def schedules(self, payments: Iterable[Payment]) -> Iterator[RecognitionSchedule]:
        """One RecognitionSchedule per valid payment, customer by customer."""
        for _, history in group_by_customer(payments):
            yield from self.schedules_for_customer(history)

    def recognize(self, payments: Iterable[Payment]) -> Iterator[RecognitionRow]:
        """Flat stream of RecognitionRows for all valid payments."""
        for schedule in self.schedules(payments):
            yield from schedule.rows

    def schedules_for_customer(self, history: List[Payment]) -> Iterator[RecognitionSchedule]:
        """
        Validates a single customer's payments, rejects the faulty ones, and
        walks the rest in (payment_at, id) order.
        """
        valid: List[Payment] = []
        for payment in sorted(history, key=payment_order):
            try:
                self.validate(payment)
            except RecognitionError as exc:
                self._reject(payment, exc)
                continue
            valid.append(payment)

        yield from self._walk_history(valid)

    def validate(self, payment: Payment) -> Plan:
        """
        Per-record checks shared by both recognizers.

        Returns:
            The payment's Plan.

        Raises:
            MissingCustomerError, UnknownPlanError, PlanIntervalMismatchError,
            InvalidAmountError
        """
        if payment.customer_id is None or not str(payment.customer_id).strip():
            raise MissingCustomerError(f"Payment {payment.id} has no customer_id", payment.id)
        plan = self.plans.get(str(payment.plan_id))
        if plan is None:
            raise UnknownPlanError(
                f"Payment {payment.id} references unknown plan {payment.plan_id!r}",
                payment.id,
            )
        if plan.plan_interval != self.plan_interval:
            raise PlanIntervalMismatchError(
                f"Payment {payment.id} is on a '{plan.plan_interval}' plan, "
                f"expected '{self.plan_interval}'",
                payment.id,
            )
        amount = payment.amount
        if not isinstance(amount, Decimal) or not amount.is_finite() or amount <= 0:
            raise InvalidAmountError(
                f"Payment {payment.id} has non-positive or invalid amount {amount!r}",
                payment.id,
            )
        return plan

    # -------------------------------------------------------------------------
    # ABSTRACT METHODS
    # -------------------------------------------------------------------------

    @abstractmethod
    def recognize_payment(
        self, payment: Payment, next_payment: Optional[Payment] = None
    ) -> RecognitionSchedule:
        ...

    @abstractmethod
    def _walk_history(self, payments: List[Payment]) -> Iterator[RecognitionSchedule]:
        ...

    # -------------------------------------------------------------------------
    # SHARED HELPERS
    # -------------------------------------------------------------------------

    def _reject(self, payment: Payment, exc: RecognitionError) -> None:
        logger.warning(f"Rejected payment {payment.id} ({type(exc).__name__}): {exc}")
        self.rejected.append(RejectedPayment(
            payment_id=payment.id,
            customer_id=payment.customer_id,
            error_type=type(exc).__name__,
            message=str(exc),
        ))

    @staticmethod
    def _row(payment: Payment, period: tuple[int, int], amount: Decimal, kind: str) -> RecognitionRow:
        return RecognitionRow(
            payment_id=payment.id,
            customer_id=payment.customer_id,
            period=period,
            recognized_amount=amount,
            state=payment.state,
            zip=payment.zip,
            kind=kind,
        )

    @staticmethod
    def _exact_difference(total: Decimal, part: Decimal) -> Decimal:
        """total - part without context rounding, so part + result == total."""
        with localcontext() as ctx:
            ctx.prec = EXACT_PRECISION
            return total - part
