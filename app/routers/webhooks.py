"""
Task Payments - Webhooks Router
Stripe webhook endpoint
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from app.deps.payments import get_webhook_processor
from app.exceptions import SignatureVerificationError
from app.services.webhooks import WebhookProcessor

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor)
):
    """
    Handle Stripe webhook events.

    Only a missing or invalid signature is rejected. Once the event is
    verified, receipt is acknowledged even if its handler failed, so Stripe
    does not keep redelivering it; failures stay in the ledger for
    reconciliation.
    """
    payload = await request.body()
    signature = request.headers.get("Stripe-Signature")

    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe signature"
        )

    try:
        result = await run_in_threadpool(processor.process, payload, signature)
    except SignatureVerificationError as e:
        logger.warning(e.message)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook signature verification failed"
        )

    if result.success:
        logger.info(f"Processed {result.event_type}: {result.message}")
    else:
        logger.error(f"Failed to process {result.event_type}: {result.message}")

    return {"received": True, **result.model_dump()}
