# Schemas package
from app.schemas.payment import (
    PaymentBreakdown,
    OnboardingStage,
    OnboardingRequirements,
    OnboardingStatus,
    OnboardingLink,
    CheckoutSessionParams,
    CheckoutSession,
    CheckoutRequest,
    CheckoutResponse,
    WebhookProcessingResult,
)
