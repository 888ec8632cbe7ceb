import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session

from conftest import FakeCompanyStore, FakePayments
from models.company import CompanyProfile
from models.payment_transaction import PaymentTransaction
from services.subscription_service import (
    SubscriptionService,
    plan_update_for_manual_grant,
    plan_update_for_purchase,
)
from utils.mercadopago import PaymentProviderError

NOW = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)


def test_purchase_adds_still_valid_manual_slots():
    company = CompanyProfile(
        uid="acme", manual_slots=3, manual_expires_at=NOW + timedelta(days=60)
    )

    update = plan_update_for_purchase(company, 10, NOW)

    assert update["purchased_slots"] == 10
    assert update["purchased_expires_at"] == NOW + timedelta(days=30)
    assert update["max_employees"] == 13
    assert update["plan_status"] == "active"
    # The manual grant outlives the purchase
    assert update["subscription_expires_at"] == NOW + timedelta(days=60)


def test_purchase_ignores_expired_manual_slots():
    company = CompanyProfile(uid="acme", manual_slots=3, manual_expires_at=NOW - timedelta(days=1))

    update = plan_update_for_purchase(company, 5, NOW)

    assert update["max_employees"] == 5
    assert update["subscription_expires_at"] == NOW + timedelta(days=30)


def test_manual_grant_adds_to_valid_purchase_and_reactivates():
    company = CompanyProfile(
        uid="acme",
        plan_status="inactive",
        purchased_slots=10,
        purchased_expires_at=NOW + timedelta(days=5),
    )

    update = plan_update_for_manual_grant(company, 4, NOW + timedelta(days=90), NOW, price_per_employee=12.5)

    assert update["max_employees"] == 14
    assert update["subscription_expires_at"] == NOW + timedelta(days=90)
    assert update["plan_status"] == "active"
    assert update["price_per_employee"] == 12.5


def test_manual_grant_in_the_past_counts_nothing():
    company = CompanyProfile(
        uid="acme", plan_status="inactive", purchased_slots=10, purchased_expires_at=NOW - timedelta(days=1)
    )

    update = plan_update_for_manual_grant(company, 4, NOW - timedelta(hours=1), NOW)

    assert update["max_employees"] == 0
    assert update["plan_status"] == "inactive"
    assert "price_per_employee" not in update


def test_manual_grant_keeps_an_explicit_status():
    company = CompanyProfile(uid="acme")
    update = plan_update_for_manual_grant(company, 2, NOW + timedelta(days=1), NOW, plan_status="blocked")
    # A future expiry lifts a block
    assert update["plan_status"] == "active"
    update = plan_update_for_manual_grant(company, 2, None, NOW, plan_status="blocked")
    assert (update["plan_status"], update["subscription_expires_at"]) == ("blocked", None)


@pytest.fixture
def service_for(engine, company):
    def build(*statuses):
        store = FakeCompanyStore(company)
        payments = FakePayments(list(statuses))
        return SubscriptionService(engine, store, payments, poll_interval=0), store, payments

    return build


def test_pix_charge_creates_pending_transaction(engine, company, service_for):
    service, _, payments = service_for()

    transaction, charge = service.create_pix_charge(company, 4, "123.456.789-00")

    assert transaction.amount == pytest.approx(79.60)
    assert payments.charges[0][0] == pytest.approx(79.60)
    assert charge.qr_code == "000201pix"
    with Session(engine) as session:
        stored = session.get(PaymentTransaction, transaction.id)
        assert (stored.status, stored.slots, stored.external_reference) == ("pending", 4, "mp-1")

    with pytest.raises(ValueError):
        service.create_pix_charge(company, 0, "123")


def test_approval_grants_slots(engine, company, service_for):
    service, store, _ = service_for("pending", "approved")
    transaction, _ = service.create_pix_charge(company, 8, "12345678900")

    assert service.check_transaction(transaction.id, NOW) == "pending"
    assert store.updates == []
    assert service.check_transaction(transaction.id, NOW) == "approved"

    assert store.companies["acme"].max_employees == 8
    assert store.companies["acme"].plan_status == "active"
    with Session(engine) as session:
        assert session.get(PaymentTransaction, transaction.id).approved_at is not None
    # Settled transactions are not polled again
    assert service.check_transaction(transaction.id, NOW) == "approved"
    assert len(store.updates) == 1


def test_cancelled_charge_grants_nothing(engine, company, service_for):
    service, store, _ = service_for("expired")
    transaction, _ = service.create_pix_charge(company, 2, "12345678900")

    assert service.check_transaction(transaction.id) == "expired"
    assert store.updates == []


def test_polling_survives_provider_errors(engine, company, service_for):
    service, store, _ = service_for(PaymentProviderError("timeout"), "pending", "approved")
    transaction, _ = service.create_pix_charge(company, 3, "12345678900")

    status = asyncio.run(service.poll_until_final(transaction.id, max_polls=10))

    assert status == "approved"
    assert store.companies["acme"].max_employees == 3


def test_polling_stops_after_max_polls(engine, company, service_for):
    service, _, _ = service_for()
    transaction, _ = service.create_pix_charge(company, 3, "12345678900")

    assert asyncio.run(service.poll_until_final(transaction.id, max_polls=2)) == "pending"
