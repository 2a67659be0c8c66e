"""
annual_recognizer.py
---------------------
Recognition for yearly-interval plans.

An annual payment is recognized over twelve consecutive calendar months,
starting with the payment month, regardless of the payment day:

    row 1       amount / 12, scaled by the share of the start month left
                (unscaled when paid on the 1st)
    rows 2–11   amount / 12
    row 12      amount - sum(rows 1..11)

Row 12 absorbs both the first-month shortfall and any Decimal division
residue, so the twelve rows always sum to the payment amount exactly.
"""

from decimal import Decimal
from typing import Iterator, List, Optional

from core.models import YEARLY, Payment, RecognitionSchedule
from core.period_math import add_months, month_key, proration_factor
from recognizers.base_recognizer import BaseRecognizer


ANNUAL_PERIODS = 12


class AnnualRecognizer(BaseRecognizer):
    """
    Expands each annual payment into a fixed twelve-row schedule.

    Usage:
        recognizer = AnnualRecognizer(plans)
        schedules = list(recognizer.schedules(payments))
    """

    plan_interval = YEARLY

    def recognize_payment(
        self, payment: Payment, next_payment: Optional[Payment] = None
    ) -> RecognitionSchedule:
        """Twelve rows for one annual payment. next_payment does not affect them."""
        self.validate(payment)

        installment = payment.amount / ANNUAL_PERIODS
        start = month_key(payment.payment_at)
        factor = proration_factor(payment.payment_at)

        schedule = RecognitionSchedule(payment=payment)
        recognized_so_far = Decimal("0")

        for n in range(ANNUAL_PERIODS):
            period = add_months(start, n)

            if n == ANNUAL_PERIODS - 1:
                amount, kind = self._exact_difference(payment.amount, recognized_so_far), "final"
            elif n == 0:
                amount, kind = installment * factor.numerator / factor.denominator, "installment"
            else:
                amount, kind = installment, "installment"

            schedule.rows.append(self._row(payment, period, amount, kind))
            recognized_so_far += amount

        return schedule

    def _walk_history(self, payments: List[Payment]) -> Iterator[RecognitionSchedule]:
        # Annual payments carry nothing between each other.
        for payment in payments:
            yield self.recognize_payment(payment)
