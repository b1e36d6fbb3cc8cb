#!/usr/bin/env python
"""
reconcile_webhooks.py - Manual reconciliation of failed Stripe webhook events

Usage:
    python reconcile_webhooks.py list              # List events whose handler failed
    python reconcile_webhooks.py retry <event_id>  # Fetch the event from Stripe and run it again
    python reconcile_webhooks.py retry-all         # Retry every failed event
"""
import sys
import os

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from app.config import get_settings
from app.database import init_db
from app.services.ledger import SqlWebhookLedger
from app.services.stripe_client import get_stripe_client
from app.services.webhooks import WebhookProcessor


def build_processor() -> WebhookProcessor:
    settings = get_settings()
    return WebhookProcessor(get_stripe_client(), SqlWebhookLedger(), settings.stripe_webhook_secret)


def list_failed(ledger: SqlWebhookLedger):
    """Print failed events, oldest first."""
    events = ledger.failed_events(limit=200)
    if not events:
        print("[OK] No failed webhook events")
        return

    print(f"{'EVENT ID':<32} {'TYPE':<45} {'ATTEMPTS':<9} ERROR")
    for event in events:
        print(f"{event.event_id:<32} {event.event_type:<45} {event.attempts:<9} {event.message or ''}")


def retry(processor: WebhookProcessor, event_id: str) -> bool:
    """Run one event again and report the outcome."""
    result = processor.reprocess(event_id)
    if result.duplicate:
        print(f"[SKIP] {event_id} already processed")
    elif result.success:
        print(f"[OK] {event_id}: {result.message}")
    else:
        print(f"[FAILED] {event_id}: {result.message}")
    return result.success


def main():
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    init_db()
    command = sys.argv[1]
    ledger = SqlWebhookLedger()

    if command == "list":
        list_failed(ledger)
    elif command == "retry":
        if len(sys.argv) < 3:
            print("[ERROR] Please provide an event id")
            sys.exit(1)
        sys.exit(0 if retry(build_processor(), sys.argv[2]) else 1)
    elif command == "retry-all":
        processor = build_processor()
        results = [retry(processor, event.event_id) for event in ledger.failed_events(limit=200)]
        print(f"[DONE] {results.count(True)} succeeded, {results.count(False)} failed")
        sys.exit(0 if all(results) else 1)
    else:
        print(f"[ERROR] Unknown command: {command}")
        print(__doc__)
        sys.exit(1)


if __name__ == "__main__":
    main()
