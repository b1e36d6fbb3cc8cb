"""
Task Payments - Payment Service Dependencies
Wires the Stripe client into the payment services for FastAPI routes
"""
from fastapi import Depends

from app.config import Settings, get_settings
from app.services.checkout import CheckoutService
from app.services.ledger import SqlWebhookLedger
from app.services.onboarding import OnboardingService
from app.services.stripe_client import StripeClient, get_stripe_client
from app.services.webhooks import WebhookProcessor


def get_client() -> StripeClient:
    """Shared Stripe client; ConfigurationError when the secret key is missing."""
    return get_stripe_client()


def get_onboarding_service(
    client: StripeClient = Depends(get_client),
    settings: Settings = Depends(get_settings)
) -> OnboardingService:
    return OnboardingService(client, settings)


def get_checkout_service(
    client: StripeClient = Depends(get_client),
    onboarding: OnboardingService = Depends(get_onboarding_service),
    settings: Settings = Depends(get_settings)
) -> CheckoutService:
    return CheckoutService(client, onboarding, settings)


def get_webhook_processor(
    client: StripeClient = Depends(get_client),
    settings: Settings = Depends(get_settings)
) -> WebhookProcessor:
    return WebhookProcessor(client, SqlWebhookLedger(), settings.stripe_webhook_secret)
