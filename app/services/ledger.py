"""
Task Payments - Webhook Ledger
Durable record of processed Stripe event ids (at-most-once handling)
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import or_, and_
from sqlalchemy.exc import IntegrityError

from app.database import SessionLocal
from app.models.models import WebhookEvent

logger = logging.getLogger(__name__)


class WebhookLedger(ABC):
    """Dedupe store keyed by event id."""

    @abstractmethod
    def claim(self, event_id: str, event_type: str, stripe_account: Optional[str] = None) -> bool:
        """
        Atomically claim an event for processing.

        Returns False when the event was already processed or another
        worker currently holds it. `stripe_account` is kept so the event
        can be fetched again from the connected account it belongs to.
        """

    @abstractmethod
    def mark_processed(self, event_id: str, message: Optional[str] = None) -> None:
        ...

    @abstractmethod
    def mark_failed(self, event_id: str, message: str) -> None:
        ...

    @abstractmethod
    def get(self, event_id: str) -> Optional[WebhookEvent]:
        ...

    @abstractmethod
    def failed_events(self, limit: int = 50) -> List[WebhookEvent]:
        ...


class SqlWebhookLedger(WebhookLedger):
    """
    Ledger backed by the webhook_event table.

    The unique constraint on event_id is the serialization point: the first
    insert wins and every concurrent or repeated delivery gets an
    IntegrityError. Failed events, and claims left in 'processing' longer
    than `stale_after`, can be claimed again through a conditional update.
    """

    def __init__(self, session_factory=SessionLocal, stale_after: timedelta = timedelta(minutes=15)):
        self.session_factory = session_factory
        self.stale_after = stale_after

    def claim(self, event_id: str, event_type: str, stripe_account: Optional[str] = None) -> bool:
        db = self.session_factory()
        try:
            db.add(WebhookEvent(
                event_id=event_id,
                event_type=event_type,
                stripe_account=stripe_account,
                status="processing",
            ))
            try:
                db.commit()
                return True
            except IntegrityError:
                db.rollback()

            now = datetime.utcnow()
            reclaimed = db.query(WebhookEvent).filter(
                WebhookEvent.event_id == event_id,
                or_(
                    WebhookEvent.status == "failed",
                    and_(
                        WebhookEvent.status == "processing",
                        WebhookEvent.claimed_at < now - self.stale_after,
                    ),
                ),
            ).update(
                {
                    WebhookEvent.status: "processing",
                    WebhookEvent.attempts: WebhookEvent.attempts + 1,
                    WebhookEvent.claimed_at: now,
                },
                synchronize_session=False,
            )
            db.commit()
            if reclaimed:
                logger.info(f"Reclaimed webhook event {event_id} for another attempt")
            return reclaimed == 1
        finally:
            db.close()

    def _finish(self, event_id: str, status: str, message: Optional[str]) -> None:
        db = self.session_factory()
        try:
            db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).update(
                {
                    WebhookEvent.status: status,
                    WebhookEvent.message: message,
                    WebhookEvent.processed_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
            db.commit()
        finally:
            db.close()

    def mark_processed(self, event_id: str, message: Optional[str] = None) -> None:
        self._finish(event_id, "processed", message)

    def mark_failed(self, event_id: str, message: str) -> None:
        self._finish(event_id, "failed", message)

    def get(self, event_id: str) -> Optional[WebhookEvent]:
        db = self.session_factory()
        try:
            return db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first()
        finally:
            db.close()

    def failed_events(self, limit: int = 50) -> List[WebhookEvent]:
        """Events whose handler failed, oldest first, for manual reconciliation."""
        db = self.session_factory()
        try:
            return db.query(WebhookEvent).filter(
                WebhookEvent.status == "failed"
            ).order_by(WebhookEvent.received_at).limit(limit).all()
        finally:
            db.close()
