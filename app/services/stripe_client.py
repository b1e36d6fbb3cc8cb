"""
Task Payments - Stripe Client
The single handle through which the payment core talks to Stripe
"""
import logging
import threading
from typing import Any, Dict, List, Optional

import stripe

from app.config import get_settings
from app.exceptions import ConfigurationError, ProviderAPIError, SignatureVerificationError

logger = logging.getLogger(__name__)


class StripeClient:
    """
    Explicit wrapper over the Stripe SDK.

    Only the operations the payment core needs are exposed. Every call passes
    the api key explicitly so nothing is configured on the `stripe` module,
    and every SDK error is wrapped in `ProviderAPIError` with the operation name.
    Results are returned as plain dicts.
    """

    def __init__(self, api_key: Optional[str]):
        if not api_key:
            raise ConfigurationError(
                "Stripe secret key not configured. Set STRIPE_SECRET_KEY to enable payments.",
                code="STRIPE_NOT_CONFIGURED",
            )
        self._api_key = api_key

    def _call(self, operation: str, method, *args, **params) -> Dict[str, Any]:
        try:
            result = method(*args, api_key=self._api_key, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe {operation} failed: {e}")
            raise ProviderAPIError(
                operation,
                str(e),
                http_status=e.http_status,
                stripe_code=e.code,
            ) from e
        return result.to_dict()

    # ------------------------------------------------------------------
    # Connected accounts
    # ------------------------------------------------------------------

    def create_account(self, **params) -> Dict[str, Any]:
        return self._call("account create", stripe.Account.create, **params)

    def retrieve_account(self, account_id: str) -> Dict[str, Any]:
        return self._call("account retrieve", stripe.Account.retrieve, account_id)

    def update_account_metadata(self, account_id: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        return self._call("account update", stripe.Account.modify, account_id, metadata=metadata)

    def create_login_link(self, account_id: str) -> Dict[str, Any]:
        return self._call("login link create", stripe.Account.create_login_link, account_id)

    def create_account_link(self, account_id: str, refresh_url: str, return_url: str) -> Dict[str, Any]:
        return self._call(
            "account link create",
            stripe.AccountLink.create,
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
            collection_options={
                "fields": "eventually_due",
                "future_requirements": "include",
            },
        )

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def create_checkout_session(self, params: Dict[str, Any], idempotency_key: str) -> Dict[str, Any]:
        return self._call(
            "checkout session create",
            stripe.checkout.Session.create,
            idempotency_key=idempotency_key,
            **params,
        )

    def retrieve_checkout_session(self, session_id: str, expand: Optional[List[str]] = None) -> Dict[str, Any]:
        params = {"expand": expand} if expand else {}
        return self._call("checkout session retrieve", stripe.checkout.Session.retrieve, session_id, **params)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def construct_event(self, payload: bytes, signature: str, secret: Optional[str]) -> Dict[str, Any]:
        """
        Verify a webhook signature against the raw request body.

        Args:
            payload: Raw request body (never re-serialized JSON)
            signature: Stripe-Signature header
            secret: Webhook endpoint signing secret

        Returns:
            The verified event as a dict
        """
        if not secret:
            raise ConfigurationError(
                "Stripe webhook secret not configured. Set STRIPE_WEBHOOK_SECRET.",
                code="WEBHOOK_NOT_CONFIGURED",
            )

        try:
            event = stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            raise SignatureVerificationError(str(e)) from e
        except ValueError as e:
            raise SignatureVerificationError(f"invalid payload ({e})") from e

        return event.to_dict()

    def retrieve_event(self, event_id: str, stripe_account: Optional[str] = None) -> Dict[str, Any]:
        """
        Fetch an event by id.

        Events raised on a connected account are only visible with that
        account's Stripe-Account header.
        """
        params = {"stripe_account": stripe_account} if stripe_account else {}
        return self._call("event retrieve", stripe.Event.retrieve, event_id, **params)


_client: Optional[StripeClient] = None
_client_lock = threading.Lock()


def get_stripe_client() -> StripeClient:
    """
    Get the process-wide Stripe client, building it on first use.

    Raises:
        ConfigurationError: if STRIPE_SECRET_KEY is not set
    """
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = StripeClient(get_settings().stripe_secret_key)
                logger.info("Stripe client initialized")
    return _client


def is_stripe_configured() -> bool:
    """Check if the Stripe client can be built (STRIPE_SECRET_KEY is set)."""
    return bool(get_settings().stripe_secret_key)
