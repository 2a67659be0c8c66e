"""
errors.py
----------
Per-record failure types raised by the recognition engine.

Every error carries the offending payment id so the pipeline can log it,
record a RejectedPayment, and keep going with the rest of the batch.
"""


class RecognitionError(ValueError):
    """Base class for a payment that cannot be recognized."""

    def __init__(self, message: str, payment_id: int | None = None):
        super().__init__(message)
        self.payment_id = payment_id


class InvalidDateError(RecognitionError):
    """Payment date is missing or cannot be parsed."""


class InvalidAmountError(RecognitionError):
    """Payment amount is non-numeric, zero or negative."""


class UnknownPlanError(RecognitionError):
    """Payment references a plan that is not in the plan table."""


class PlanIntervalMismatchError(RecognitionError):
    """A recognizer was handed a payment whose plan bills on another interval."""


class MissingCustomerError(RecognitionError):
    """Payment has no customer, so it cannot join any carryover chain."""
