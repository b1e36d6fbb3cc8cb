"""
Task Payments - Payment Schemas
Pydantic schemas for fee breakdowns, onboarding status, checkout and webhooks
"""
from enum import Enum
from pydantic import BaseModel, Field, computed_field
from typing import Any, Dict, List, Optional
from datetime import datetime


class PaymentBreakdown(BaseModel):
    """Monetary split of one task payment, in minor currency units."""
    task_price_cents: int
    payer_fee_cents: int
    payee_commission_cents: int
    total_charge_cents: int
    platform_fee_cents: int
    payee_receives_cents: int
    currency: str

    class Config:
        frozen = True


class OnboardingStage(str, Enum):
    """Where a connected account sits on the way to receiving funds."""
    NOT_SUBMITTED = "not_submitted"
    DETAILS_SUBMITTED = "details_submitted"
    CHARGES_ENABLED = "charges_enabled"
    PAYOUTS_ENABLED = "payouts_enabled"

    @classmethod
    def from_flags(
        cls,
        details_submitted: bool,
        charges_enabled: bool,
        payouts_enabled: bool
    ) -> "OnboardingStage":
        if details_submitted and charges_enabled and payouts_enabled:
            return cls.PAYOUTS_ENABLED
        if details_submitted and charges_enabled:
            return cls.CHARGES_ENABLED
        if details_submitted:
            return cls.DETAILS_SUBMITTED
        return cls.NOT_SUBMITTED


class OnboardingRequirements(BaseModel):
    """Outstanding Stripe requirement ids for a connected account."""
    currently_due: List[str] = Field(default_factory=list)
    eventually_due: List[str] = Field(default_factory=list)
    past_due: List[str] = Field(default_factory=list)
    pending_verification: List[str] = Field(default_factory=list)
    disabled_reason: Optional[str] = None

    class Config:
        frozen = True


class OnboardingStatus(BaseModel):
    """
    Eligibility of a payee's connected account to receive funds.

    `is_fully_onboarded` and `stage` are always derived from the three
    capability flags of this snapshot.
    """
    account_id: str
    details_submitted: bool = False
    charges_enabled: bool = False
    payouts_enabled: bool = False
    requirements: OnboardingRequirements = Field(default_factory=OnboardingRequirements)

    class Config:
        frozen = True

    @computed_field
    @property
    def is_fully_onboarded(self) -> bool:
        return self.details_submitted and self.charges_enabled and self.payouts_enabled

    @computed_field
    @property
    def stage(self) -> OnboardingStage:
        return OnboardingStage.from_flags(
            self.details_submitted, self.charges_enabled, self.payouts_enabled
        )

    @classmethod
    def from_account(cls, account: Dict[str, Any]) -> "OnboardingStatus":
        """Build a status snapshot from a Stripe account object."""
        requirements = account.get("requirements") or {}
        return cls(
            account_id=account["id"],
            details_submitted=bool(account.get("details_submitted")),
            charges_enabled=bool(account.get("charges_enabled")),
            payouts_enabled=bool(account.get("payouts_enabled")),
            requirements=OnboardingRequirements(
                currently_due=requirements.get("currently_due") or [],
                eventually_due=requirements.get("eventually_due") or [],
                past_due=requirements.get("past_due") or [],
                pending_verification=requirements.get("pending_verification") or [],
                disabled_reason=requirements.get("disabled_reason"),
            ),
        )


class OnboardingLink(BaseModel):
    """Hosted onboarding URL for a connected account."""
    url: str
    expires_at: datetime


class OnboardingResponse(BaseModel):
    """Schema for starting or resuming payee onboarding."""
    stripe_account_id: str
    onboarding_url: str
    expires_at: datetime


class OnboardingStartRequest(BaseModel):
    """Schema for starting payee onboarding."""
    country: Optional[str] = None


class OnboardingStatusResponse(BaseModel):
    """Schema for the caller's onboarding state."""
    onboarded: bool
    status: Optional[OnboardingStatus] = None
    message: Optional[str] = None


class DashboardLinkResponse(BaseModel):
    """Schema for the Express dashboard login link."""
    dashboard_url: str


class CheckoutSessionParams(BaseModel):
    """Inputs for building a checkout session for one task payment."""
    task_id: str
    task_title: str
    task_price_cents: int
    payer_id: str
    payee_id: str
    payee_account_id: str
    success_url: str
    cancel_url: str
    payer_email: Optional[str] = None
    currency: Optional[str] = None
    attempt: int = 1


class CheckoutSession(BaseModel):
    """A created Stripe-hosted checkout session."""
    session_id: str
    checkout_url: str
    breakdown: PaymentBreakdown
    task_id: str
    payer_id: str
    payee_id: str
    idempotency_key: str

    class Config:
        frozen = True


class CheckoutRequest(BaseModel):
    """Schema for paying a payee for a task."""
    task_id: str
    task_title: str
    task_price_cents: int
    payee_id: str
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    currency: Optional[str] = None
    attempt: int = 1


class CheckoutResponse(BaseModel):
    """Schema for checkout session response."""
    payment_id: str
    session_id: str
    checkout_url: str
    amount_cents: int
    breakdown: PaymentBreakdown


class CheckoutStatusResponse(BaseModel):
    """Schema for checkout session status."""
    session_id: str
    status: Optional[str] = None
    payment_status: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None


class WebhookProcessingResult(BaseModel):
    """Outcome of processing one webhook event."""
    success: bool
    event_id: str
    event_type: str
    message: str
    duplicate: bool = False
    data: Optional[Dict[str, Any]] = None
