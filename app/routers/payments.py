"""
Task Payments - Payments Router
Fee preview, task checkout and payee onboarding endpoints
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db
from app.deps.auth import get_current_user, TokenData
from app.deps.payments import get_checkout_service, get_onboarding_service
from app.exceptions import PayeeNotOnboarded
from app.models.models import ConnectedAccount, TaskPayment
from app.schemas.payment import (
    CheckoutRequest,
    CheckoutResponse,
    CheckoutSession,
    CheckoutSessionParams,
    CheckoutStatusResponse,
    DashboardLinkResponse,
    OnboardingResponse,
    OnboardingStartRequest,
    OnboardingStatusResponse,
    PaymentBreakdown,
)
from app.services.checkout import CheckoutService
from app.services.fees import FeeSchedule, compute_breakdown
from app.services.onboarding import OnboardingService, describe_outstanding_requirement

router = APIRouter(prefix="/payments", tags=["payments"])
settings = get_settings()
logger = logging.getLogger(__name__)


def payee_not_onboarded(message: str, onboarding_status: Optional[dict] = None) -> HTTPException:
    detail = {
        "error": "Helper has not completed payment account onboarding",
        "code": "PAYEE_NOT_ONBOARDED",
        "message": message,
    }
    if onboarding_status is not None:
        detail["onboarding_status"] = onboarding_status
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def find_session_payment(db: Session, session_id: str) -> Optional[TaskPayment]:
    return db.query(TaskPayment).filter(TaskPayment.session_id == session_id).first()


def record_checkout_payment(db: Session, session: CheckoutSession, payee_account_id: str) -> TaskPayment:
    """
    Store the pending payment for a checkout session, once per session.

    A retried or double-submitted request gets the same session back from
    Stripe, so the row may already exist or be inserted concurrently.
    """
    payment = find_session_payment(db, session.session_id)
    if payment:
        return payment

    breakdown = session.breakdown
    payment = TaskPayment(
        session_id=session.session_id,
        task_id=session.task_id,
        payer_id=session.payer_id,
        payee_id=session.payee_id,
        payee_account_id=payee_account_id,
        task_price_cents=breakdown.task_price_cents,
        payer_fee_cents=breakdown.payer_fee_cents,
        payee_commission_cents=breakdown.payee_commission_cents,
        total_charge_cents=breakdown.total_charge_cents,
        platform_fee_cents=breakdown.platform_fee_cents,
        payee_receives_cents=breakdown.payee_receives_cents,
        currency=breakdown.currency,
        status="pending",
        idempotency_key=session.idempotency_key,
    )
    db.add(payment)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = find_session_payment(db, session.session_id)
        if existing is None:
            raise
        logger.info(f"Task payment for session {session.session_id} was recorded by a concurrent request")
        return existing

    db.refresh(payment)
    return payment


@router.get("/fees", response_model=PaymentBreakdown)
def preview_fees(
    task_price_cents: int = Query(..., description="Task price in cents"),
    currency: Optional[str] = None
):
    """
    Preview what the payer is charged and what the helper receives.
    """
    schedule = FeeSchedule(
        payer_fee_cents=settings.payer_fee_cents,
        payee_commission_percent=settings.payee_commission_percent,
    )
    return compute_breakdown(task_price_cents, currency or settings.default_currency, schedule)


@router.post("/checkout", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
def create_checkout(
    request: CheckoutRequest,
    db: Session = Depends(get_db),
    current_user: TokenData = Depends(get_current_user),
    checkout: CheckoutService = Depends(get_checkout_service)
):
    """
    Create a hosted checkout session paying a helper for a task.

    The caller is the payer. Redirect them to `checkout_url`.
    """
    if request.payee_id == current_user.sub:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot pay yourself for a task"
        )

    account = db.query(ConnectedAccount).filter(
        ConnectedAccount.payee_id == request.payee_id
    ).first()
    if not account:
        raise payee_not_onboarded(
            "The helper needs to complete their payment account setup before you can pay."
        )

    base_url = settings.frontend_url
    params = CheckoutSessionParams(
        task_id=request.task_id,
        task_title=request.task_title,
        task_price_cents=request.task_price_cents,
        payer_id=current_user.sub,
        payee_id=request.payee_id,
        payee_account_id=account.stripe_account_id,
        success_url=request.success_url or f"{base_url}/tasks/{request.task_id}?payment=success",
        cancel_url=request.cancel_url or f"{base_url}/tasks/{request.task_id}?payment=cancelled",
        payer_email=current_user.email,
        currency=request.currency,
        attempt=request.attempt,
    )

    try:
        session = checkout.create_checkout_session(params)
    except PayeeNotOnboarded as e:
        raise payee_not_onboarded(e.message, e.status.model_dump(mode="json"))

    payment = record_checkout_payment(db, session, account.stripe_account_id)

    return CheckoutResponse(
        payment_id=payment.id,
        session_id=session.session_id,
        checkout_url=session.checkout_url,
        amount_cents=session.breakdown.total_charge_cents,
        breakdown=session.breakdown,
    )


@router.get("/checkout/{session_id}", response_model=CheckoutStatusResponse)
def get_checkout_status(
    session_id: str,
    db: Session = Depends(get_db),
    current_user: TokenData = Depends(get_current_user),
    checkout: CheckoutService = Depends(get_checkout_service)
):
    """
    Get the payment status of one of the caller's checkout sessions.
    """
    payment = db.query(TaskPayment).filter(
        TaskPayment.session_id == session_id,
        TaskPayment.payer_id == current_user.sub
    ).first()

    if not payment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Checkout session not found"
        )

    return checkout.get_checkout_session_status(session_id)


@router.post("/onboarding", response_model=OnboardingResponse)
def start_onboarding(
    request: OnboardingStartRequest,
    db: Session = Depends(get_db),
    current_user: TokenData = Depends(get_current_user),
    onboarding: OnboardingService = Depends(get_onboarding_service)
):
    """
    Start (or resume) payout onboarding for the caller as a helper.

    Creates the connected account on first use and returns a hosted
    onboarding link.
    """
    account = onboarding.get_or_create_account(
        db, current_user.sub, current_user.email, request.country
    )

    base_url = settings.frontend_url
    link = onboarding.create_onboarding_link(
        account.stripe_account_id,
        refresh_url=f"{base_url}/profile/payouts?refresh=true",
        return_url=f"{base_url}/profile/payouts?onboarding=complete",
    )

    return OnboardingResponse(
        stripe_account_id=account.stripe_account_id,
        onboarding_url=link.url,
        expires_at=link.expires_at,
    )


@router.get("/onboarding", response_model=OnboardingStatusResponse)
def get_onboarding(
    db: Session = Depends(get_db),
    current_user: TokenData = Depends(get_current_user),
    onboarding: OnboardingService = Depends(get_onboarding_service)
):
    """
    Get the caller's current payout onboarding status.
    """
    account = db.query(ConnectedAccount).filter(
        ConnectedAccount.payee_id == current_user.sub
    ).first()

    if not account:
        return OnboardingStatusResponse(
            onboarded=False,
            message="Payment account not set up"
        )

    onboarding_status = onboarding.get_onboarding_status(account.stripe_account_id)
    return OnboardingStatusResponse(
        onboarded=onboarding_status.is_fully_onboarded,
        status=onboarding_status,
        message=describe_outstanding_requirement(onboarding_status),
    )


@router.get("/dashboard", response_model=DashboardLinkResponse)
def get_dashboard_link(
    db: Session = Depends(get_db),
    current_user: TokenData = Depends(get_current_user),
    onboarding: OnboardingService = Depends(get_onboarding_service)
):
    """
    Get a login link to the caller's payout dashboard.
    """
    account = db.query(ConnectedAccount).filter(
        ConnectedAccount.payee_id == current_user.sub
    ).first()

    if not account:
        raise payee_not_onboarded("Payment account not set up")

    onboarding_status = onboarding.get_onboarding_status(account.stripe_account_id)
    if not onboarding_status.is_fully_onboarded:
        raise payee_not_onboarded(
            describe_outstanding_requirement(onboarding_status),
            onboarding_status.model_dump(mode="json"),
        )

    return DashboardLinkResponse(
        dashboard_url=onboarding.create_dashboard_login_link(account.stripe_account_id)
    )
