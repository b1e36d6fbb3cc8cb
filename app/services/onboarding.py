"""
Task Payments - Onboarding Service
Stripe Connect Express accounts for payees who receive funds
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.models.models import ConnectedAccount
from app.schemas.payment import OnboardingLink, OnboardingStatus
from app.services.stripe_client import StripeClient

logger = logging.getLogger(__name__)

# Requirement id prefixes mapped to what the payee has to do
REQUIREMENT_HINTS = [
    ("external_account", "add a bank account for payouts"),
    ("tos_acceptance", "accept the payment terms of service"),
    ("individual.verification", "upload an identity document"),
    ("individual.id_number", "provide a personal identification number"),
    ("individual.address", "provide a home address"),
    ("individual.dob", "provide a date of birth"),
    ("individual", "complete personal details"),
    ("business_profile", "complete the business profile"),
]


def describe_requirement(requirement: str) -> str:
    """Turn a Stripe requirement id into an action for the payee."""
    for prefix, hint in REQUIREMENT_HINTS:
        if requirement == prefix or requirement.startswith(prefix + "."):
            return hint
    return f"provide {requirement.replace('_', ' ').replace('.', ' ')}"


def describe_outstanding_requirement(status: OnboardingStatus) -> Optional[str]:
    """
    Describe the first thing blocking a payee from receiving funds.

    Past-due requirements come first, then currently due ones, then anything
    Stripe is still verifying, then whichever capability flag is still off.
    Returns None when the account is fully onboarded.
    """
    if status.is_fully_onboarded:
        return None

    requirements = status.requirements
    if requirements.past_due:
        return f"Overdue: the helper must {describe_requirement(requirements.past_due[0])}."
    if requirements.currently_due:
        return f"The helper must {describe_requirement(requirements.currently_due[0])}."
    if requirements.pending_verification:
        return "The helper's details are being verified by the payment provider."
    if not status.details_submitted:
        return "The helper has not finished setting up their payment account."
    if not status.charges_enabled:
        return "The helper's payment account cannot accept payments yet."
    return "The helper's payment account cannot receive payouts yet."


class OnboardingService:
    """Connected account lifecycle and onboarding status for payees."""

    def __init__(self, client: StripeClient, settings: Optional[Settings] = None):
        self.client = client
        self.settings = settings or get_settings()

    def create_connected_account(
        self,
        payee_id: str,
        email: Optional[str] = None,
        country: Optional[str] = None
    ) -> str:
        """
        Create an Express connected account for a payee.

        Payout timing follows the configured schedule (manual by default,
        so the platform decides when payouts happen).

        Returns:
            The Stripe account ID
        """
        params = dict(
            type="express",
            country=(country or self.settings.default_account_country).upper(),
            capabilities={
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
            business_type="individual",
            metadata={
                "payee_id": payee_id,
                "platform": self.settings.platform_name,
            },
            settings={
                "payouts": {
                    "schedule": {"interval": self.settings.payout_schedule_interval},
                },
            },
        )
        if email:
            params["email"] = email

        account = self.client.create_account(**params)
        logger.info(f"Created connected account {account['id']} for payee {payee_id}")
        return account["id"]

    def get_or_create_account(
        self,
        db: Session,
        payee_id: str,
        email: Optional[str] = None,
        country: Optional[str] = None
    ) -> ConnectedAccount:
        """Return the payee's connected account, creating it on first use."""
        record = db.query(ConnectedAccount).filter(
            ConnectedAccount.payee_id == payee_id
        ).first()
        if record:
            return record

        account_id = self.create_connected_account(payee_id, email, country)
        record = ConnectedAccount(
            payee_id=payee_id,
            stripe_account_id=account_id,
            country=(country or self.settings.default_account_country).upper(),
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    def create_onboarding_link(
        self,
        account_id: str,
        refresh_url: str,
        return_url: str
    ) -> OnboardingLink:
        """
        Create a hosted onboarding link for a connected account.

        Args:
            account_id: The Stripe Connected Account ID
            refresh_url: Where to send the payee if the link expires
            return_url: Where to send the payee after onboarding
        """
        link = self.client.create_account_link(account_id, refresh_url, return_url)
        return OnboardingLink(
            url=link["url"],
            expires_at=datetime.fromtimestamp(link["expires_at"], tz=timezone.utc),
        )

    def create_dashboard_login_link(self, account_id: str) -> str:
        """Login link to the payee's Express dashboard (balance, payouts)."""
        return self.client.create_login_link(account_id)["url"]

    def get_onboarding_status(self, account_id: str) -> OnboardingStatus:
        """
        Fetch the current onboarding status straight from Stripe.

        Never cached: the payee may complete requirements between calls.
        """
        return OnboardingStatus.from_account(self.client.retrieve_account(account_id))

    def can_receive_payouts(self, account_id: str) -> bool:
        return self.get_onboarding_status(account_id).payouts_enabled

    def update_account_metadata(self, account_id: str, metadata: Dict[str, str]) -> None:
        self.client.update_account_metadata(account_id, metadata)
