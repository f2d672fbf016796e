"""Error taxonomy for the booking-and-payment flow.

Validation errors stay local to the wizard. Everything else reaches the
HTTP layer as a user-facing message; none of these are retried
automatically.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


class BookingError(Exception):
    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message}: {self.cause}"
        return self.message


class ValidationError(BookingError):
    """One or more wizard fields failed their step checks."""

    def __init__(self, errors: list[FieldError]):
        super().__init__("; ".join(f"{e.field}: {e.message}" for e in errors) or "invalid input")
        self.errors = list(errors)


class ConfigurationError(BookingError):
    """Fatal to the payment step: missing gateway key or widget library failure."""


class InitializationError(BookingError):
    """Backend refused to register the pending transaction."""


class VerificationError(BookingError):
    """Verification call itself failed (network, backend error)."""


class UnverifiedPayment(BookingError):
    """Widget reported success but the backend did not confirm settlement."""

    def __init__(self, message: str, reference: str, status: str | None = None):
        super().__init__(message)
        self.reference = reference
        self.status = status


class PaymentStateError(BookingError):
    """Illegal gateway transition, e.g. a second attempt while one is pending."""


class SubmissionError(BookingError):
    """Backend rejected booking creation after a verified payment.

    The verified reference is carried along so it can be resubmitted
    without charging the customer again.
    """

    def __init__(self, message: str, payment_reference: str | None, duplicate: bool = False, cause: Exception | None = None):
        super().__init__(message, cause)
        self.payment_reference = payment_reference
        self.duplicate = duplicate


class GraphQLError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None, errors: list | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []
