"""Exception types raised by explicit billing actions."""
from __future__ import annotations


class ValidationError(ValueError):
    """A user action was rejected; the message is safe to show to the user."""


class DiscountValidationError(ValidationError):
    pass


class PaymentValidationError(ValidationError):
    pass


class InvalidTransitionError(ValidationError):
    """Raised when a billing record is moved out of a terminal status."""

    def __init__(self, record_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Record '{record_id}' is {current}; cannot change status to {requested}"
        )
        self.record_id = record_id
        self.current = current
        self.requested = requested


class PaymentProcessingError(RuntimeError):
    """The payment API did not accept a payment."""


__all__ = [
    "ValidationError",
    "DiscountValidationError",
    "PaymentValidationError",
    "InvalidTransitionError",
    "PaymentProcessingError",
]
