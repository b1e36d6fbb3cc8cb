"""
Task Payments - Checkout Service
Stripe Checkout sessions with destination charges

Fee rules:
- fixed fee charged to the payer on top of the task price
- percentage commission withheld from the payee's earnings
The platform's share is taken as the session's application fee, so Stripe
splits the funds atomically when the charge settles.
"""
import hashlib
import logging
from typing import Any, Dict, Optional

from app.config import Settings, get_settings
from app.exceptions import PayeeNotOnboarded, ProviderAPIError
from app.schemas.payment import (
    CheckoutSession,
    CheckoutSessionParams,
    CheckoutStatusResponse,
    PaymentBreakdown,
)
from app.services.fees import FeeSchedule, compute_breakdown
from app.services.onboarding import OnboardingService, describe_outstanding_requirement
from app.services.stripe_client import StripeClient

logger = logging.getLogger(__name__)

SESSION_ID_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


def build_success_url(success_url: str) -> str:
    """Append the session id placeholder, keeping any existing query string."""
    separator = "&" if "?" in success_url else "?"
    return f"{success_url}{separator}session_id={SESSION_ID_PLACEHOLDER}"


def derive_idempotency_key(task_id: str, payee_id: str, attempt: int = 1) -> str:
    """
    Idempotency key for creating a checkout session.

    The same task, payee and attempt always map to the same key, so a retried
    or double-submitted request returns the session Stripe already created.
    """
    digest = hashlib.sha256(f"{task_id}:{payee_id}:{attempt}".encode("utf-8")).hexdigest()
    return f"checkout_{digest}"


def breakdown_metadata(breakdown: PaymentBreakdown) -> Dict[str, str]:
    """Every breakdown amount as Stripe metadata (string values only)."""
    return {
        "task_price_cents": str(breakdown.task_price_cents),
        "payer_fee_cents": str(breakdown.payer_fee_cents),
        "payee_commission_cents": str(breakdown.payee_commission_cents),
        "total_charge_cents": str(breakdown.total_charge_cents),
        "platform_fee_cents": str(breakdown.platform_fee_cents),
        "payee_receives_cents": str(breakdown.payee_receives_cents),
        "currency": breakdown.currency,
    }


class CheckoutService:
    """Builds Stripe-hosted checkout sessions for task payments."""

    def __init__(
        self,
        client: StripeClient,
        onboarding: Optional[OnboardingService] = None,
        settings: Optional[Settings] = None
    ):
        self.client = client
        self.settings = settings or get_settings()
        self.onboarding = onboarding or OnboardingService(client, self.settings)
        self.fee_schedule = FeeSchedule(
            payer_fee_cents=self.settings.payer_fee_cents,
            payee_commission_percent=self.settings.payee_commission_percent,
        )

    def create_checkout_session(self, params: CheckoutSessionParams) -> CheckoutSession:
        """
        Create a Stripe Checkout session for a task payment.

        The payee's account must be fully onboarded. The charge is made on
        the platform account, the remainder is transferred to the payee's
        connected account and the platform keeps the application fee.

        Args:
            params: Task, parties, price and redirect URLs

        Returns:
            Created session with its redirect URL and payment breakdown

        Raises:
            PayeeNotOnboarded: payee cannot receive funds yet
            InvalidAmount: task price is not a valid amount
            ProviderAPIError: Stripe rejected or failed the request
        """
        onboarding_status = self.onboarding.get_onboarding_status(params.payee_account_id)
        if not onboarding_status.is_fully_onboarded:
            raise PayeeNotOnboarded(
                onboarding_status,
                message=describe_outstanding_requirement(onboarding_status),
            )

        currency = (params.currency or self.settings.default_currency).lower()
        breakdown = compute_breakdown(params.task_price_cents, currency, self.fee_schedule)
        idempotency_key = derive_idempotency_key(params.task_id, params.payee_id, params.attempt)

        session = self.client.create_checkout_session(
            self._session_request(params, breakdown),
            idempotency_key=idempotency_key,
        )

        if not session.get("url"):
            raise ProviderAPIError(
                "checkout session create",
                f"no URL returned for session {session.get('id')}",
            )

        logger.info(
            f"Created checkout session {session['id']} for task {params.task_id} "
            f"({breakdown.total_charge_cents} {currency}, fee {breakdown.platform_fee_cents})"
        )

        return CheckoutSession(
            session_id=session["id"],
            checkout_url=session["url"],
            breakdown=breakdown,
            task_id=params.task_id,
            payer_id=params.payer_id,
            payee_id=params.payee_id,
            idempotency_key=idempotency_key,
        )

    def _session_request(self, params: CheckoutSessionParams, breakdown: PaymentBreakdown) -> Dict[str, Any]:
        ids = {
            "task_id": params.task_id,
            "payee_id": params.payee_id,
            "payer_id": params.payer_id,
            "payee_account_id": params.payee_account_id,
            "platform": self.settings.platform_name,
        }

        request: Dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": breakdown.currency,
                        "product_data": {
                            "name": params.task_title,
                            "description": f"Task payment for: {params.task_title}",
                        },
                        "unit_amount": breakdown.task_price_cents,
                    },
                    "quantity": 1,
                },
                {
                    "price_data": {
                        "currency": breakdown.currency,
                        "product_data": {
                            "name": "Service Fee",
                            "description": "Platform service fee",
                        },
                        "unit_amount": breakdown.payer_fee_cents,
                    },
                    "quantity": 1,
                },
            ],
            "payment_intent_data": {
                "application_fee_amount": breakdown.platform_fee_cents,
                "transfer_data": {"destination": params.payee_account_id},
                "metadata": {**ids, **breakdown_metadata(breakdown)},
            },
            "success_url": build_success_url(params.success_url),
            "cancel_url": params.cancel_url,
            "metadata": {**ids, **breakdown_metadata(breakdown)},
        }

        if params.payer_email:
            request["customer_email"] = params.payer_email

        return request

    def get_checkout_session(self, session_id: str) -> Dict[str, Any]:
        """Retrieve a checkout session with its payment intent and line items."""
        return self.client.retrieve_checkout_session(
            session_id, expand=["payment_intent", "line_items"]
        )

    def get_checkout_session_status(self, session_id: str) -> CheckoutStatusResponse:
        session = self.client.retrieve_checkout_session(session_id)
        return CheckoutStatusResponse(
            session_id=session["id"],
            status=session.get("status"),
            payment_status=session.get("payment_status"),
            amount_total=session.get("amount_total"),
            currency=session.get("currency"),
        )
