"""
Shared fixtures: in-memory database, fake Stripe client, signed webhook payloads.
"""
import hashlib
import hmac
import json
import os
import time
from typing import Any, Dict, List, Optional

# Settings are cached on first import, so the environment must be set first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["DEBUG"] = "false"

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.deps.payments import get_client, get_webhook_processor
from app.exceptions import ProviderAPIError
from app.main import app as fastapi_app
from app.models import models  # noqa: F401
from app.services.ledger import SqlWebhookLedger
from app.services.stripe_client import StripeClient
from app.services.webhooks import WebhookProcessor

WEBHOOK_SECRET = "whsec_test_secret"
JWT_SECRET = "test-jwt-secret"


class FakeStripeClient(StripeClient):
    """
    In-memory stand-in for Stripe.

    Network operations are recorded; signature verification is inherited
    and therefore real.
    """

    def __init__(self):
        super().__init__("sk_test_fake")
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.sessions_by_key: Dict[str, str] = {}
        self.created_sessions: List[Dict[str, Any]] = []
        self.events: Dict[str, Dict[str, Any]] = {}
        self.event_retrievals: List[tuple] = []
        self.metadata_updates: List[tuple] = []
        self.account_retrievals = 0

    def create_account(self, **params) -> Dict[str, Any]:
        account_id = f"acct_{len(self.accounts) + 1:04d}"
        self.accounts[account_id] = {
            "id": account_id,
            "details_submitted": False,
            "charges_enabled": False,
            "payouts_enabled": False,
            "requirements": {"currently_due": ["external_account"]},
            "create_params": params,
        }
        return self.accounts[account_id]

    def set_account(
        self,
        account_id: str,
        details_submitted: bool = True,
        charges_enabled: bool = True,
        payouts_enabled: bool = True,
        **requirements
    ) -> Dict[str, Any]:
        self.accounts[account_id] = {
            "id": account_id,
            "details_submitted": details_submitted,
            "charges_enabled": charges_enabled,
            "payouts_enabled": payouts_enabled,
            "requirements": requirements,
        }
        return self.accounts[account_id]

    def retrieve_account(self, account_id: str) -> Dict[str, Any]:
        self.account_retrievals += 1
        if account_id not in self.accounts:
            raise ProviderAPIError("account retrieve", f"No such account: {account_id}", http_status=404)
        return dict(self.accounts[account_id])

    def update_account_metadata(self, account_id: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        self.metadata_updates.append((account_id, metadata))
        return self.accounts[account_id]

    def create_login_link(self, account_id: str) -> Dict[str, Any]:
        return {"url": f"https://connect.stripe.com/express/{account_id}/login"}

    def create_account_link(self, account_id: str, refresh_url: str, return_url: str) -> Dict[str, Any]:
        return {
            "url": f"https://connect.stripe.com/setup/e/{account_id}",
            "expires_at": 1767225600,
            "refresh_url": refresh_url,
            "return_url": return_url,
        }

    def create_checkout_session(self, params: Dict[str, Any], idempotency_key: str) -> Dict[str, Any]:
        if idempotency_key in self.sessions_by_key:
            return self.sessions[self.sessions_by_key[idempotency_key]]

        session_id = f"cs_test_{len(self.sessions) + 1:04d}"
        session = {
            "id": session_id,
            "url": f"https://checkout.stripe.com/c/pay/{session_id}",
            "status": "open",
            "payment_status": "unpaid",
            "amount_total": sum(item["price_data"]["unit_amount"] for item in params["line_items"]),
            "currency": params["line_items"][0]["price_data"]["currency"],
            "params": params,
            "idempotency_key": idempotency_key,
        }
        self.sessions[session_id] = session
        self.sessions_by_key[idempotency_key] = session_id
        self.created_sessions.append(session)
        return session

    def retrieve_checkout_session(self, session_id: str, expand: Optional[List[str]] = None) -> Dict[str, Any]:
        return self.sessions[session_id]

    def retrieve_event(self, event_id: str, stripe_account: Optional[str] = None) -> Dict[str, Any]:
        self.event_retrievals.append((event_id, stripe_account))
        event = self.events.get(event_id)
        # Connected account events are only visible with that account's header
        if event is None or event.get("account") != stripe_account:
            raise ProviderAPIError("event retrieve", f"No such event: {event_id}", http_status=404)
        return event


def make_event(event_type: str, obj: Dict[str, Any], event_id: str = "evt_test_1", **extra) -> Dict[str, Any]:
    event = {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }
    event.update(extra)
    return event


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header for a payload."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def encode_event(event: Dict[str, Any]) -> bytes:
    return json.dumps(event).encode("utf-8")


def auth_headers(user_id: str, email: Optional[str] = None) -> Dict[str, str]:
    claims = {"sub": user_id}
    if email:
        claims["email"] = email
    token = jwt.encode(claims, JWT_SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def stripe_client() -> FakeStripeClient:
    return FakeStripeClient()


@pytest.fixture
def ledger(session_factory) -> SqlWebhookLedger:
    return SqlWebhookLedger(session_factory)


@pytest.fixture
def processor(stripe_client, ledger, session_factory) -> WebhookProcessor:
    return WebhookProcessor(stripe_client, ledger, WEBHOOK_SECRET, session_factory)


@pytest.fixture
def api(stripe_client, processor, session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_client] = lambda: stripe_client
    fastapi_app.dependency_overrides[get_webhook_processor] = lambda: processor
    try:
        yield TestClient(fastapi_app)
    finally:
        fastapi_app.dependency_overrides.clear()
