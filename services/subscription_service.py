"""
Employee slot subscriptions paid by PIX.

A charge creates a pending PaymentTransaction row. The charge is then polled
until the provider reports a final status; approval grants the purchased
slots for 30 days on top of any still-valid manual slots.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from sqlalchemy.engine import Engine
from sqlmodel import Session

from core.settings import PAYMENT_POLL_INTERVAL_SECONDS
from models.company import CompanyProfile
from models.payment_transaction import PaymentTransaction
from services.company_store import CompanyStore
from utils.mercadopago import MercadoPagoClient, PaymentProviderError, PixCharge

logger = logging.getLogger(__name__)

PURCHASE_VALIDITY_DAYS = 30
FINAL_STATUSES = {"approved", "cancelled", "expired"}


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def plan_update_for_purchase(company: CompanyProfile, purchased_slots: int, now: datetime) -> Dict:
    """Company fields to write once a purchase of `purchased_slots` is approved."""
    purchased_expires_at = now + timedelta(days=PURCHASE_VALIDITY_DAYS)

    manual_expires_at = _aware(company.manual_expires_at)
    manual_valid = manual_expires_at is not None and manual_expires_at > now
    valid_manual_slots = company.manual_slots if manual_valid else 0

    latest_expiry = purchased_expires_at
    if manual_valid and manual_expires_at > purchased_expires_at:
        latest_expiry = manual_expires_at

    return {
        "purchased_slots": purchased_slots,
        "purchased_expires_at": purchased_expires_at,
        "plan_status": "active",
        "max_employees": purchased_slots + valid_manual_slots,
        "subscription_expires_at": latest_expiry,
    }


def plan_update_for_manual_grant(
    company: CompanyProfile,
    manual_slots: int,
    manual_expires_at: Optional[datetime],
    now: datetime,
    plan_status: Optional[str] = None,
    price_per_employee: Optional[float] = None,
) -> Dict:
    """Company fields to write when support grants slots by hand.

    Only unexpired slots count toward `max_employees`; the subscription runs
    until the latest of the purchased and manual expiries. A plan with a
    future expiry is switched back to active.
    """
    manual_expires_at = _aware(manual_expires_at)
    purchased_expires_at = _aware(company.purchased_expires_at)

    valid_purchased = company.purchased_slots if purchased_expires_at and purchased_expires_at > now else 0
    valid_manual = manual_slots if manual_expires_at and manual_expires_at > now else 0

    expiries = [d for d in (purchased_expires_at, manual_expires_at) if d is not None]
    latest_expiry = max(expiries) if expiries else None

    status = plan_status or company.plan_status
    if latest_expiry is not None and latest_expiry > now and status in ("inactive", "blocked"):
        status = "active"

    update = {
        "manual_slots": manual_slots,
        "manual_expires_at": manual_expires_at,
        "max_employees": valid_purchased + valid_manual,
        "subscription_expires_at": latest_expiry,
        "plan_status": status,
    }
    if price_per_employee is not None:
        update["price_per_employee"] = price_per_employee
    return update


class SubscriptionService:
    def __init__(
        self,
        engine: Engine,
        company_store: CompanyStore,
        payments: Optional[MercadoPagoClient] = None,
        poll_interval: float = PAYMENT_POLL_INTERVAL_SECONDS,
    ):
        self.engine = engine
        self.company_store = company_store
        self.payments = payments or MercadoPagoClient()
        self.poll_interval = poll_interval

    def create_pix_charge(
        self, company: CompanyProfile, slots: int, payer_cpf: str
    ) -> Tuple[PaymentTransaction, PixCharge]:
        if slots < 1:
            raise ValueError("At least one slot must be purchased")

        amount = round(slots * company.price_per_employee, 2)
        description = f"Purchase of {slots} employee slots"
        charge = self.payments.create_pix_payment(amount, company.email, payer_cpf, description)

        transaction = PaymentTransaction(
            company_id=company.uid,
            amount=amount,
            slots=slots,
            status="pending",
            payment_method="pix",
            external_reference=charge.payment_id,
            description=description,
            qr_code=charge.qr_code,
        )
        with Session(self.engine) as session:
            session.add(transaction)
            session.commit()
            session.refresh(transaction)
            session.expunge(transaction)

        logger.info(
            f"[SUBSCRIPTION] 🧾 PIX charge {charge.payment_id} for {company.uid}: {slots} slots, {amount}"
        )
        return transaction, charge

    def check_transaction(self, transaction_id: str, now: Optional[datetime] = None) -> str:
        """Poll the provider once and settle the transaction on a final status."""
        with Session(self.engine) as session:
            transaction = session.get(PaymentTransaction, transaction_id)
            if transaction is None:
                raise LookupError(f"Transaction {transaction_id} not found")
            if transaction.status in FINAL_STATUSES:
                return transaction.status

            provider_status = self.payments.get_payment_status(transaction.external_reference)
            now = now or datetime.now(timezone.utc)

            if provider_status == "approved":
                company = self.company_store.get(transaction.company_id)
                if company is None:
                    raise LookupError(f"Company {transaction.company_id} not found")
                self.company_store.update(
                    company.uid, plan_update_for_purchase(company, transaction.slots, now)
                )
                transaction.status = "approved"
                transaction.approved_at = now
                logger.info(
                    f"[SUBSCRIPTION] ✅ Payment {transaction.external_reference} approved, "
                    f"{transaction.slots} slots granted to {company.uid}"
                )
            elif provider_status in ("cancelled", "expired"):
                transaction.status = provider_status
                logger.warning(
                    f"[SUBSCRIPTION] ⚠️ Payment {transaction.external_reference} {provider_status}"
                )
            else:
                return transaction.status

            session.add(transaction)
            session.commit()
            return transaction.status

    async def poll_until_final(self, transaction_id: str, max_polls: Optional[int] = None) -> str:
        """Check every `poll_interval` seconds until the charge settles.

        Provider errors are logged and polling continues.
        """
        polls = 0
        status = "pending"
        while max_polls is None or polls < max_polls:
            await asyncio.sleep(self.poll_interval)
            polls += 1
            try:
                status = await asyncio.to_thread(self.check_transaction, transaction_id)
            except PaymentProviderError as e:
                logger.error(f"[SUBSCRIPTION] ❌ Polling error for {transaction_id}: {e}")
                continue
            if status in FINAL_STATUSES:
                return status
        return status
