"""
Task Payments - Webhook Processor
Stripe webhook handling using the "thin events" approach:
- verify the signature against the raw body
- fetch the event again from the Stripe API by id
- claim the event id in the ledger so redeliveries are no-ops
- route by event type and update reconciliation state
"""
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.exceptions import ProviderAPIError, UnhandledEventType
from app.models.models import ConnectedAccount, TaskPayment
from app.schemas.payment import OnboardingStatus, WebhookProcessingResult
from app.services.ledger import WebhookLedger
from app.services.stripe_client import StripeClient

logger = logging.getLogger(__name__)

FINAL_PAYMENT_STATUS = "paid"


class WebhookProcessor:
    """Verifies, dedupes and dispatches Stripe webhook events."""

    def __init__(
        self,
        client: StripeClient,
        ledger: WebhookLedger,
        webhook_secret: Optional[str],
        session_factory=SessionLocal
    ):
        self.client = client
        self.ledger = ledger
        self.webhook_secret = webhook_secret
        self.session_factory = session_factory
        self.handlers: Dict[str, Callable[[Dict[str, Any]], WebhookProcessingResult]] = {
            # Account events (Connect)
            "account.updated": self.handle_account_updated,
            "capability.updated": self.handle_capability_updated,
            # Checkout events
            "checkout.session.completed": self.handle_checkout_session_completed,
            "checkout.session.async_payment_succeeded": self.handle_checkout_async_payment_succeeded,
            "checkout.session.async_payment_failed": self.handle_checkout_async_payment_failed,
            "checkout.session.expired": self.handle_checkout_session_expired,
            # Payment intent events
            "payment_intent.succeeded": self.handle_payment_intent_succeeded,
            "payment_intent.payment_failed": self.handle_payment_intent_failed,
            "payment_intent.canceled": self.handle_payment_intent_canceled,
            # Transfer events (destination charges)
            "transfer.created": self.handle_transfer_created,
            # Payout events (connected accounts)
            "payout.paid": self.handle_payout_paid,
            "payout.failed": self.handle_payout_failed,
        }

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def process(self, payload: bytes, signature: str) -> WebhookProcessingResult:
        """
        Process one webhook delivery.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header

        Returns:
            Processing result; handler failures come back as success=False

        Raises:
            SignatureVerificationError: signature invalid, nothing was handled
            ConfigurationError: webhook secret missing
        """
        verified = self.client.construct_event(payload, signature, self.webhook_secret)
        event_id, event_type = verified["id"], verified["type"]
        logger.info(f"Received event: {event_type} ({event_id})")

        return self._fetch_and_dispatch(event_id, event_type, verified.get("account"))

    def reprocess(self, event_id: str) -> WebhookProcessingResult:
        """
        Fetch a recorded event again and run it (manual reconciliation).

        A failed fetch comes back as success=False, like a live delivery.
        """
        record = self.ledger.get(event_id)
        event_type = record.event_type if record else "unknown"
        stripe_account = record.stripe_account if record else None
        return self._fetch_and_dispatch(event_id, event_type, stripe_account)

    def _fetch_and_dispatch(
        self,
        event_id: str,
        event_type: str,
        stripe_account: Optional[str]
    ) -> WebhookProcessingResult:
        try:
            event = self.client.retrieve_event(event_id, stripe_account=stripe_account)
        except ProviderAPIError as e:
            logger.error(f"Could not fetch event {event_id}: {e.message}")
            if self.ledger.claim(event_id, event_type, stripe_account):
                self.ledger.mark_failed(event_id, e.message)
            return WebhookProcessingResult(
                success=False,
                event_id=event_id,
                event_type=event_type,
                message=f"Error fetching event: {e.message}",
            )

        return self.dispatch(event)

    def dispatch(self, event: Dict[str, Any]) -> WebhookProcessingResult:
        """Claim the event in the ledger, run its handler and record the outcome."""
        event_id, event_type = event["id"], event["type"]

        if not self.ledger.claim(event_id, event_type, event.get("account")):
            logger.info(f"Event {event_id} already processed, skipping")
            return WebhookProcessingResult(
                success=True,
                event_id=event_id,
                event_type=event_type,
                message=f"Event {event_id} already processed",
                duplicate=True,
            )

        try:
            result = self.route(event)
        except UnhandledEventType as e:
            logger.info(f"Unhandled event type: {event_type}")
            result = self._result(event, e.message)
        except Exception as e:
            logger.error(f"Error processing {event_type} ({event_id}): {e}", exc_info=True)
            self.ledger.mark_failed(event_id, str(e))
            return WebhookProcessingResult(
                success=False,
                event_id=event_id,
                event_type=event_type,
                message=f"Error processing event: {e}",
            )

        self.ledger.mark_processed(event_id, result.message)
        return result

    def route(self, event: Dict[str, Any]) -> WebhookProcessingResult:
        handler = self.handlers.get(event["type"])
        if handler is None:
            raise UnhandledEventType(event["type"])
        return handler(event)

    @staticmethod
    def _result(event: Dict[str, Any], message: str, data: Optional[Dict[str, Any]] = None) -> WebhookProcessingResult:
        return WebhookProcessingResult(
            success=True,
            event_id=event["id"],
            event_type=event["type"],
            message=message,
            data=data,
        )

    # ------------------------------------------------------------------
    # Reconciliation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _find_payment(
        db: Session,
        session_id: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[TaskPayment]:
        if session_id:
            payment = db.query(TaskPayment).filter(TaskPayment.session_id == session_id).first()
            if payment:
                return payment
        if payment_intent_id:
            payment = db.query(TaskPayment).filter(
                TaskPayment.payment_intent_id == payment_intent_id
            ).first()
            if payment:
                return payment
        metadata = metadata or {}
        if metadata.get("task_id") and metadata.get("payee_id"):
            return db.query(TaskPayment).filter(
                TaskPayment.task_id == metadata["task_id"],
                TaskPayment.payee_id == metadata["payee_id"],
            ).order_by(TaskPayment.created_at.desc()).first()
        return None

    @staticmethod
    def _payment_from_session(session: Dict[str, Any]) -> Optional[TaskPayment]:
        """Rebuild a missing payment record from the session's metadata."""
        metadata = session.get("metadata") or {}
        required = (
            "task_id", "payer_id", "payee_id", "payee_account_id",
            "task_price_cents", "payer_fee_cents", "payee_commission_cents",
            "total_charge_cents", "platform_fee_cents", "payee_receives_cents",
        )
        if not all(metadata.get(key) for key in required):
            return None
        return TaskPayment(
            session_id=session["id"],
            task_id=metadata["task_id"],
            payer_id=metadata["payer_id"],
            payee_id=metadata["payee_id"],
            payee_account_id=metadata["payee_account_id"],
            task_price_cents=int(metadata["task_price_cents"]),
            payer_fee_cents=int(metadata["payer_fee_cents"]),
            payee_commission_cents=int(metadata["payee_commission_cents"]),
            total_charge_cents=int(metadata["total_charge_cents"]),
            platform_fee_cents=int(metadata["platform_fee_cents"]),
            payee_receives_cents=int(metadata["payee_receives_cents"]),
            currency=metadata.get("currency") or session.get("currency") or "eur",
            status="pending",
        )

    @staticmethod
    def _set_status(payment: TaskPayment, status: str) -> bool:
        """Move a payment to a new status; a paid payment is never downgraded."""
        if payment.status == FINAL_PAYMENT_STATUS and status != FINAL_PAYMENT_STATUS:
            logger.warning(
                f"Ignoring status {status} for task payment {payment.id}: already {payment.status}"
            )
            return False
        payment.status = status
        return True

    def _update_session_payment(self, session: Dict[str, Any], status: Optional[str]) -> Optional[TaskPayment]:
        db = self.session_factory()
        try:
            payment = self._find_payment(db, session_id=session["id"])
            if payment is None:
                payment = self._payment_from_session(session)
                if payment is None:
                    logger.warning(f"No task payment found for checkout session {session['id']}")
                    return None
                db.add(payment)

            if session.get("payment_intent") and not payment.payment_intent_id:
                payment.payment_intent_id = session["payment_intent"]
            if status:
                self._set_status(payment, status)
            db.commit()
            db.refresh(payment)
            return payment
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Account event handlers
    # ------------------------------------------------------------------

    def handle_account_updated(self, event: Dict[str, Any]) -> WebhookProcessingResult:
        """
        Refresh the stored snapshot of a connected account.

        The stage is derived from this one snapshot alone, so out-of-order
        deliveries cannot leave a stale stage behind once the latest arrives.
        """
        account = event["data"]["object"]
        status = OnboardingStatus.from_account(account)
        requirements = status.requirements

        previous_stage = None
        db = self.session_factory()
        try:
            record = db.query(ConnectedAccount).filter(
                ConnectedAccount.stripe_account_id == status.account_id
            ).first()
            if record:
                previous_stage = record.onboarding_stage
                record.details_submitted = status.details_submitted
                record.charges_enabled = status.charges_enabled
                record.payouts_enabled = status.payouts_enabled
                record.onboarding_stage = status.stage.value
                record.requirements_due = requirements.currently_due + requirements.past_due
                record.disabled_reason = requirements.disabled_reason
                db.commit()
            else:
                logger.warning(f"Account {status.account_id} is not linked to a payee")
        finally:
            db.close()

        if previous_stage != status.stage.value:
            logger.info(f"Account {status.account_id} stage: {previous_stage} -> {status.stage.value}")
        if status.is_fully_onboarded:
            logger.info(f"Account {status.account_id} is fully onboarded")
        if requirements.currently_due:
            logger.info(f"Account {status.account_id} has pending requirements: {requirements.currently_due}")
        if requirements.disabled_reason:
            logger.warning(f"Account {status.account_id} disabled: {requirements.disabled_reason}")

        data = status.model_dump(mode="json")
        data["previous_stage"] = previous_stage
        return self._result(event, f"Account {status.account_id} status updated", data)

    def handle_capability_updated(self, event: Dict[str, Any]) -> WebhookProcessingResult:
        capability = event["data"]["object"]
        currently_due = (capability.get("requirements") or {}).get("currently_due") or []

        if capability.get("status") == "active":
            logger.info(f"Capability {capability['id']} is now active for account {capability.get('account')}")
        elif capability.get("status") == "pending" and currently_due:
            logger.info(f"Capability {capability['id']} pending requirements: {currently_due}")

        return self._result(
            event,
            f"Capability {capability['id']} updated to {capability.get('status')}",
            {
                "account": capability.get("account"),
                "capability": capability["id"],
                "status": capability.get("status"),
            },
        )

    # ------------------------------------------------------------------
    # Checkout event handlers
    # ------------------------------------------------------------------

    def handle_checkout_session_completed(self, event: Dict[str, Any]) -> WebhookProcessingResult:
        """
        Checkout flow finished. Card payments are confirmed here; delayed
        methods (bank debits) stay pending until the async events arrive.
        """
        session = event["data"]["object"]
        payment_status = session.get("payment_status")
        metadata = session.get("metadata") or {}

        new_status = "paid" if payment_status == "paid" else None
        payment = self._update_session_payment(session, new_status)

        if payment_status == "paid":
            logger.info(f"Payment confirmed for task {metadata.get('task_id')}")
        else:
            logger.info(f"Payment pending for task {metadata.get('task_id')}")

        return self._result(
            event,
            f"Checkout session {session['id']} completed with status {payment_status}",
            {
                "session_id": session["id"],
                "payment_status": payment_status,
                "task_id": metadata.get("task_id"),
                "payee_id": metadata.get("payee_id"),
                "payer_id": metadata.get("payer_id"),
                "payment_id": payment.id if payment else None,
            },
        )

    def handle_checkout_async_payment_succeeded(self, event: Dict[str, Any]) -> WebhookProcessingResult:
        session = event["data"]["object"]
        self._update_session_payment(session, "paid")
        return self._result(
            event,
            f"Async payment succeeded for session {session['id']}",
            {"session_id": session["id"], "task_id": (session.get("metadata") or {}).get("task_id")},
        )

    def handle_checkout_async_payment_failed(self, event: Dict[str, Any]) -> WebhookProcessingResult:
        session = event["data"]["object"]
        self._update_session_payment(session, "failed")
        return self._result(
            event,
            f"Async payment failed for session {session['id']}",
            {"session_id": session["id"], "task_id": (session.get("metadata") or {}).get("task_id")},
        )

    def handle_checkout_session_expired(self, event: Dict[str, Any]) -> WebhookProcessingResult:
        session = event["data"]["object"]
        self._update_session_payment(session, "expired")
        return self._result(
            event,
            f"Checkout session {session['id']} expired",
            {"session_id": session["id"]},
        )

    # ------------------------------------------------------------------
    # Payment intent event handlers
    # ------------------------------------------------------------------

    def _update_intent_payment(
        self,
        intent: Dict[str, Any],
        status: str,
        failure_message: Optional[str] = None
    ) -> Optional[TaskPayment]:
        db = self.session_factory()
        try:
            payment = self._find_payment(
                db,
                payment_intent_id=intent["id"],
                metadata=intent.get("metadata"),
            )
            if payment is None:
                logger.warning(f"No task payment found for payment intent {intent['id']}")
                return None

            payment.payment_intent_id = intent["id"]
            if self._set_status(payment, status) and failure_message:
                payment.failure_message = failure_message
            db.commit()
            db.refresh(payment)
            return payment
        finally:
            db.close()

    def handle_payment_intent_succeeded(self, event: Dict[str, Any]) -> WebhookProcessingResult:
        intent = event["data"]["object"]
        self._update_intent_payment(intent, "paid")
        return self._result(
            event,
            f"Payment intent {intent['id']} succeeded",
            {
                "payment_intent_id": intent["id"],
                "amount": intent.get("amount"),
                "task_id": (intent.get("metadata") or {}).get("task_id"),
            },
        )

    def handle_payment_intent_failed(self, event: Dict[str, Any]) -> WebhookProcessingResult:
        intent = event["data"]["object"]
        error = (intent.get("last_payment_error") or {}).get("message")
        self._update_intent_payment(intent, "failed", failure_message=error)
        return self._result(
            event,
            f"Payment intent {intent['id']} failed: {error}",
            {
                "payment_intent_id": intent["id"],
                "error": error,
                "task_id": (intent.get("metadata") or {}).get("task_id"),
            },
        )

    def handle_payment_intent_canceled(self, event: Dict[str, Any]) -> WebhookProcessingResult:
        intent = event["data"]["object"]
        self._update_intent_payment(intent, "canceled")
        return self._result(
            event,
            f"Payment intent {intent['id']} canceled",
            {"payment_intent_id": intent["id"]},
        )

    # ------------------------------------------------------------------
    # Transfer and payout event handlers
    # ------------------------------------------------------------------

    def handle_transfer_created(self, event: Dict[str, Any]) -> WebhookProcessingResult:
        """Funds moved to a connected account; destination charges group transfers by intent."""
        transfer = event["data"]["object"]
        transfer_group = transfer.get("transfer_group") or ""

        payment_id = None
        if transfer_group.startswith("group_pi_"):
            db = self.session_factory()
            try:
                payment = self._find_payment(db, payment_intent_id=transfer_group[len("group_"):])
                if payment:
                    payment.transfer_id = transfer["id"]
                    db.commit()
                    payment_id = payment.id
            finally:
                db.close()

        logger.info(
            f"Transfer {transfer['id']} created: {transfer.get('amount')} "
            f"{transfer.get('currency')} to {transfer.get('destination')}"
        )
        return self._result(
            event,
            f"Transfer {transfer['id']} created to {transfer.get('destination')}",
            {
                "transfer_id": transfer["id"],
                "amount": transfer.get("amount"),
                "destination": transfer.get("destination"),
                "payment_id": payment_id,
            },
        )

    def handle_payout_paid(self, event: Dict[str, Any]) -> WebhookProcessingResult:
        payout = event["data"]["object"]
        logger.info(
            f"Payout {payout['id']} paid: {payout.get('amount')} {payout.get('currency')} "
            f"(account {event.get('account')})"
        )
        return self._result(
            event,
            f"Payout {payout['id']} paid",
            {"payout_id": payout["id"], "amount": payout.get("amount"), "account": event.get("account")},
        )

    def handle_payout_failed(self, event: Dict[str, Any]) -> WebhookProcessingResult:
        payout = event["data"]["object"]
        logger.warning(
            f"Payout {payout['id']} failed for account {event.get('account')}: "
            f"{payout.get('failure_code')} {payout.get('failure_message')}"
        )
        return self._result(
            event,
            f"Payout {payout['id']} failed: {payout.get('failure_message')}",
            {
                "payout_id": payout["id"],
                "failure_code": payout.get("failure_code"),
                "failure_message": payout.get("failure_message"),
                "account": event.get("account"),
            },
        )
