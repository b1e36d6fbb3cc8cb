from datetime import datetime, timezone

import pytest

from app.config import Settings
from app.models.models import ConnectedAccount
from app.schemas.payment import OnboardingStage, OnboardingStatus
from app.services.onboarding import (
    OnboardingService,
    describe_outstanding_requirement,
    describe_requirement,
)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        stripe_secret_key="sk_test_dummy",
        default_account_country="IE",
        payout_schedule_interval="manual",
        platform_name="taskmarket",
    )


@pytest.fixture
def onboarding(stripe_client, settings) -> OnboardingService:
    return OnboardingService(stripe_client, settings)


def status_for(details=True, charges=True, payouts=True, **requirements) -> OnboardingStatus:
    return OnboardingStatus.from_account(
        {
            "id": "acct_123",
            "details_submitted": details,
            "charges_enabled": charges,
            "payouts_enabled": payouts,
            "requirements": requirements,
        }
    )


def test_fully_onboarded_requires_all_three_flags():
    assert status_for().is_fully_onboarded is True
    assert status_for(details=False).is_fully_onboarded is False
    assert status_for(charges=False).is_fully_onboarded is False
    assert status_for(payouts=False).is_fully_onboarded is False


@pytest.mark.parametrize(
    "details, charges, payouts, stage",
    [
        (False, False, False, OnboardingStage.NOT_SUBMITTED),
        (False, True, True, OnboardingStage.NOT_SUBMITTED),
        (True, False, False, OnboardingStage.DETAILS_SUBMITTED),
        (True, False, True, OnboardingStage.DETAILS_SUBMITTED),
        (True, True, False, OnboardingStage.CHARGES_ENABLED),
        (True, True, True, OnboardingStage.PAYOUTS_ENABLED),
    ],
)
def test_stage_is_derived_from_flags(details, charges, payouts, stage):
    assert status_for(details, charges, payouts).stage == stage


def test_from_account_reads_requirements():
    status = OnboardingStatus.from_account(
        {
            "id": "acct_123",
            "details_submitted": True,
            "charges_enabled": None,
            "requirements": {
                "currently_due": ["external_account"],
                "eventually_due": ["individual.id_number"],
                "past_due": None,
                "disabled_reason": "requirements.past_due",
            },
        }
    )

    assert status.charges_enabled is False
    assert status.payouts_enabled is False
    assert status.requirements.currently_due == ["external_account"]
    assert status.requirements.eventually_due == ["individual.id_number"]
    assert status.requirements.past_due == []
    assert status.requirements.pending_verification == []
    assert status.requirements.disabled_reason == "requirements.past_due"


def test_status_dump_includes_derived_fields():
    data = status_for(payouts=False).model_dump(mode="json")

    assert data["is_fully_onboarded"] is False
    assert data["stage"] == "charges_enabled"


def test_describe_requirement():
    assert describe_requirement("external_account") == "add a bank account for payouts"
    assert describe_requirement("individual.verification.document") == "upload an identity document"
    assert describe_requirement("individual.first_name") == "complete personal details"
    assert describe_requirement("company.tax_id") == "provide company tax id"


def test_describe_outstanding_requirement_priorities():
    assert describe_outstanding_requirement(status_for()) is None

    assert describe_outstanding_requirement(
        status_for(payouts=False, past_due=["tos_acceptance.date"], currently_due=["external_account"])
    ) == "Overdue: the helper must accept the payment terms of service."
    assert describe_outstanding_requirement(
        status_for(payouts=False, currently_due=["external_account"])
    ) == "The helper must add a bank account for payouts."
    assert "being verified" in describe_outstanding_requirement(
        status_for(payouts=False, pending_verification=["individual.verification.document"])
    )
    assert "not finished" in describe_outstanding_requirement(status_for(details=False))
    assert "cannot accept payments" in describe_outstanding_requirement(status_for(charges=False))
    assert "cannot receive payouts" in describe_outstanding_requirement(status_for(payouts=False))


def test_create_connected_account_params(onboarding, stripe_client):
    account_id = onboarding.create_connected_account("payee-1", email="helper@example.com", country="de")

    params = stripe_client.accounts[account_id]["create_params"]
    assert params["type"] == "express"
    assert params["country"] == "DE"
    assert params["email"] == "helper@example.com"
    assert params["business_type"] == "individual"
    assert params["capabilities"] == {
        "card_payments": {"requested": True},
        "transfers": {"requested": True},
    }
    assert params["metadata"] == {"payee_id": "payee-1", "platform": "taskmarket"}
    assert params["settings"]["payouts"]["schedule"]["interval"] == "manual"


def test_create_connected_account_defaults(onboarding, stripe_client):
    account_id = onboarding.create_connected_account("payee-1")

    params = stripe_client.accounts[account_id]["create_params"]
    assert params["country"] == "IE"
    assert "email" not in params


def test_get_or_create_account_creates_once(onboarding, stripe_client, db):
    first = onboarding.get_or_create_account(db, "payee-1", "helper@example.com")
    second = onboarding.get_or_create_account(db, "payee-1", "helper@example.com")

    assert first.id == second.id
    assert first.stripe_account_id == second.stripe_account_id
    assert len(stripe_client.accounts) == 1
    assert db.query(ConnectedAccount).count() == 1
    assert first.country == "IE"


def test_create_onboarding_link(onboarding, stripe_client):
    link = onboarding.create_onboarding_link(
        "acct_123",
        refresh_url="https://app.example.com/refresh",
        return_url="https://app.example.com/return",
    )

    assert link.url == "https://connect.stripe.com/setup/e/acct_123"
    assert link.expires_at == datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_create_dashboard_login_link(onboarding):
    assert onboarding.create_dashboard_login_link("acct_123") == \
        "https://connect.stripe.com/express/acct_123/login"


def test_onboarding_status_is_never_cached(onboarding, stripe_client):
    stripe_client.set_account("acct_123", payouts_enabled=False)
    assert onboarding.get_onboarding_status("acct_123").is_fully_onboarded is False

    stripe_client.set_account("acct_123")
    assert onboarding.get_onboarding_status("acct_123").is_fully_onboarded is True
    assert stripe_client.account_retrievals == 2


def test_can_receive_payouts(onboarding, stripe_client):
    stripe_client.set_account("acct_123", payouts_enabled=False)
    assert onboarding.can_receive_payouts("acct_123") is False

    stripe_client.set_account("acct_123")
    assert onboarding.can_receive_payouts("acct_123") is True


def test_update_account_metadata(onboarding, stripe_client):
    stripe_client.set_account("acct_123")
    onboarding.update_account_metadata("acct_123", {"tier": "pro"})

    assert stripe_client.metadata_updates == [("acct_123", {"tier": "pro"})]
