"""
Task Payments - Exceptions
Payment errors with a stable code and their HTTP translation
"""
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class PaymentError(Exception):
    """Base class for payment core errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "error": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ConfigurationError(PaymentError):
    """A required secret or setting is missing."""


class InvalidAmount(PaymentError):
    """Task price is negative, non-finite or not a whole number of cents."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, amount: Any):
        self.amount = amount
        super().__init__(
            f"Invalid task price: {amount!r} (expected a non-negative whole number of cents)",
            code="INVALID_AMOUNT",
            details={"amount": repr(amount)},
        )


class PayeeNotOnboarded(PaymentError):
    """The payee's connected account cannot receive funds yet."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, onboarding_status, message: Optional[str] = None):
        self.status = onboarding_status
        super().__init__(
            message or (
                f"Payee account {onboarding_status.account_id} has not completed onboarding. "
                f"Details submitted: {onboarding_status.details_submitted}, "
                f"Charges enabled: {onboarding_status.charges_enabled}, "
                f"Payouts enabled: {onboarding_status.payouts_enabled}"
            ),
            code="PAYEE_NOT_ONBOARDED",
            details={"onboarding_status": onboarding_status.model_dump(mode="json")},
        )


class SignatureVerificationError(PaymentError):
    """Webhook signature did not verify; the payload must not be trusted."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str):
        super().__init__(
            f"Webhook signature verification failed: {reason}",
            code="INVALID_SIGNATURE",
        )


class ProviderAPIError(PaymentError):
    """A call to the payment provider failed."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        operation: str,
        message: str,
        http_status: Optional[int] = None,
        stripe_code: Optional[str] = None
    ):
        self.operation = operation
        self.http_status = http_status
        self.stripe_code = stripe_code
        super().__init__(
            f"Stripe {operation} failed: {message}",
            code="PROVIDER_ERROR",
            details={
                "operation": operation,
                "http_status": http_status,
                "stripe_code": stripe_code,
            },
        )


class UnhandledEventType(PaymentError):
    """Webhook event type with no registered handler (acknowledged, not an error)."""

    status_code = status.HTTP_200_OK

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(
            f"Event type {event_type} acknowledged but not handled",
            code="UNHANDLED_EVENT_TYPE",
        )
