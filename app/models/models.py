"""
Task Payments - SQLAlchemy Models
Connected accounts, task payments and the webhook dedupe ledger
"""
import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, Text, Boolean, Integer, DateTime, JSON
)

from app.database import Base


def generate_uuid():
    return str(uuid.uuid4())


class ConnectedAccount(Base):
    """Stripe Connect account owned by a payee (one per payee)."""
    __tablename__ = "connected_account"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    payee_id = Column(String(36), unique=True, nullable=False, index=True)
    stripe_account_id = Column(String(255), unique=True, nullable=False, index=True)
    country = Column(String(2), nullable=True)

    # Last snapshot seen via account.updated; Stripe stays the source of truth
    details_submitted = Column(Boolean, default=False)
    charges_enabled = Column(Boolean, default=False)
    payouts_enabled = Column(Boolean, default=False)
    onboarding_stage = Column(String(50), default="not_submitted")
    requirements_due = Column(JSON, nullable=True)
    disabled_reason = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class TaskPayment(Base):
    """One checkout session created for a task, reconciled by webhooks."""
    __tablename__ = "task_payment"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    session_id = Column(String(255), unique=True, nullable=False, index=True)
    task_id = Column(String(36), nullable=False, index=True)
    payer_id = Column(String(36), nullable=False)
    payee_id = Column(String(36), nullable=False)
    payee_account_id = Column(String(255), nullable=False)

    task_price_cents = Column(Integer, nullable=False)
    payer_fee_cents = Column(Integer, nullable=False)
    payee_commission_cents = Column(Integer, nullable=False)
    total_charge_cents = Column(Integer, nullable=False)
    platform_fee_cents = Column(Integer, nullable=False)
    payee_receives_cents = Column(Integer, nullable=False)
    currency = Column(String(10), default="eur")

    status = Column(String(50), default="pending")  # 'pending', 'paid', 'failed', 'expired', 'canceled'
    payment_intent_id = Column(String(255), nullable=True, index=True)
    transfer_id = Column(String(255), nullable=True)
    failure_message = Column(Text, nullable=True)
    idempotency_key = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class WebhookEvent(Base):
    """Dedupe ledger: one row per Stripe event id."""
    __tablename__ = "webhook_event"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    stripe_account = Column(String(255), nullable=True)  # connected account the event belongs to
    status = Column(String(20), nullable=False, default="processing")  # 'processing', 'processed', 'failed'
    message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    received_at = Column(DateTime, default=datetime.utcnow)
    claimed_at = Column(DateTime, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)
