"""
monthly_recognizer.py
----------------------
Recognition for monthly-interval plans.

A monthly payment buys one month of service starting on the payment day.
The days left in the payment month are recognized there; whatever is left
of the payment rolls into the following month as a carryover:

    $39 paid on Jan 15 (31-day month)
        Jan: 17/31 * 39 = 21.387...   (prorated)
        Feb: 39 - 21.387... = 17.612...   (carryover)

Each customer's payments are walked in order as consecutive pairs
(payment, next payment). A next payment never cancels a carryover: its own
proration is computed independently and the carryover is still recognized
in that month. It only closes the chain.

Carryover does not cross December of the payment's year unless
recognition.carry_past_year_end is set. The remainder held back is reported
as the schedule's deferred_amount.
"""

import logging
from typing import Dict, Iterator, List, Optional

from core.models import MONTHLY, CarryoverState, Payment, Plan, RecognitionSchedule
from core.period_math import add_months, month_key, proration_factor
from recognizers.base_recognizer import BaseRecognizer

logger = logging.getLogger(__name__)


class MonthlyRecognizer(BaseRecognizer):
    """
    Prorates monthly payments and carries the remainder forward.

    Usage:
        recognizer = MonthlyRecognizer(plans)
        rows = list(recognizer.recognize(payments))
    """

    plan_interval = MONTHLY

    def __init__(self, plans: Dict[str, Plan], carry_past_year_end: bool | None = None):
        super().__init__(plans)
        if carry_past_year_end is None:
            carry_past_year_end = self.config["carry_past_year_end"]
        self.carry_past_year_end = carry_past_year_end

    def recognize_payment(
        self, payment: Payment, next_payment: Optional[Payment] = None
    ) -> RecognitionSchedule:
        """
        Builds the prorated row and the carryover chain for one payment.

        Args:
            payment: A monthly-plan payment.
            next_payment: The same customer's next payment, if any. The chain
                closes in the month that payment lands in.
        """
        self.validate(payment)

        start = month_key(payment.payment_at)
        factor = proration_factor(payment.payment_at)
        first_amount = payment.amount * factor.numerator / factor.denominator

        schedule = RecognitionSchedule(payment=payment)
        schedule.rows.append(self._row(payment, start, first_amount, "prorated"))

        chain = CarryoverState(
            customer_id=payment.customer_id,
            payment_id=payment.id,
            period=start,
            remainder=self._exact_difference(payment.amount, first_amount),
        )
        closing_period = month_key(next_payment.payment_at) if next_payment is not None else None

        while chain.is_open:
            period = add_months(chain.period, 1)

            if not self.carry_past_year_end and period[0] > start[0]:
                schedule.deferred_amount = chain.remainder
                logger.debug(
                    f"Payment {payment.id}: {chain.remainder} deferred past year-end {start[0]}"
                )
                break

            superseded = closing_period is not None and period >= closing_period
            portion = chain.remainder if superseded else min(chain.remainder, payment.amount)

            schedule.rows.append(self._row(payment, period, portion, "carryover"))
            chain.period = period
            chain.remainder -= portion

        return schedule

    def _walk_history(self, payments: List[Payment]) -> Iterator[RecognitionSchedule]:
        """Walks consecutive (payment, next payment) pairs."""
        followers: List[Optional[Payment]] = list(payments[1:]) + [None]
        for payment, next_payment in zip(payments, followers):
            yield self.recognize_payment(payment, next_payment)

