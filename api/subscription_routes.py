import logging
from functools import lru_cache
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel, Field as PydanticField
from sqlmodel import Session, select

from core.deps import get_company_store, get_current_company
from db.session import engine, get_session
from models.company import CompanyProfile
from models.payment_transaction import PaymentTransaction
from services.subscription_service import SubscriptionService
from utils.mercadopago import PaymentProviderError

logger = logging.getLogger(__name__)

router = APIRouter()


class PixChargePayload(BaseModel):
    slots: int = PydanticField(..., ge=1, le=1000)
    payer_cpf: str = PydanticField(..., min_length=11)


@lru_cache(maxsize=1)
def _default_subscription_service() -> SubscriptionService:
    return SubscriptionService(engine, get_company_store())


def get_subscription_service() -> SubscriptionService:
    return _default_subscription_service()


# Expired companies still reach these routes so they can renew
@router.post("/pix", status_code=status.HTTP_201_CREATED)
async def create_pix_charge(
    data: PixChargePayload,
    background_tasks: BackgroundTasks,
    company: Annotated[CompanyProfile, Depends(get_current_company)],
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
):
    try:
        transaction, charge = service.create_pix_charge(company, data.slots, data.payer_cpf)
    except PaymentProviderError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    # Settle in the background; clients can also poll GET /pix/{id}
    background_tasks.add_task(service.poll_until_final, transaction.id)

    return {
        "status": "success",
        "data": {
            "transaction_id": transaction.id,
            "amount": transaction.amount,
            "slots": transaction.slots,
            "payment_id": charge.payment_id,
            "qr_code": charge.qr_code,
            "qr_code_base64": charge.qr_code_base64,
        },
    }


@router.get("/pix/{transaction_id}")
async def check_pix_charge(
    transaction_id: str,
    company: Annotated[CompanyProfile, Depends(get_current_company)],
    session: Annotated[Session, Depends(get_session)],
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
):
    transaction = session.get(PaymentTransaction, transaction_id)
    if not transaction or transaction.company_id != company.uid:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found.")

    try:
        payment_status = service.check_transaction(transaction_id)
    except PaymentProviderError as e:
        logger.error(f"[SUBSCRIPTION] ❌ Status check failed for {transaction_id}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    return {"status": "success", "data": {"transaction_id": transaction_id, "payment_status": payment_status}}


@router.get("/transactions", response_model=list[PaymentTransaction])
async def list_transactions(
    company: Annotated[CompanyProfile, Depends(get_current_company)],
    session: Annotated[Session, Depends(get_session)],
):
    return session.exec(
        select(PaymentTransaction)
        .where(PaymentTransaction.company_id == company.uid)
        .order_by(PaymentTransaction.created_at.desc())
    ).all()
