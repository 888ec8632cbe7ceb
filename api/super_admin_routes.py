import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Annotated, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field as PydanticField
from sqlmodel import Session, select

from core.deps import get_attendance_store, get_company_store, get_super_admin
from db.session import get_session
from models.company import CompanyProfile
from models.employee import Employee
from services.attendance_store import AttendanceStore
from services.company_admin_service import block_update, delete_company
from services.company_store import CompanyStore
from services.subscription_service import plan_update_for_manual_grant

logger = logging.getLogger(__name__)

router = APIRouter()


class CompanySummary(CompanyProfile):
    employee_count: int = 0


class ManualGrant(BaseModel):
    manual_slots: int = PydanticField(..., ge=0)
    manual_expires_at: Optional[datetime] = None
    plan_status: Optional[str] = PydanticField(default=None, pattern=r"^(active|inactive|blocked)$")
    price_per_employee: Optional[float] = PydanticField(default=None, gt=0)


class BlockPayload(BaseModel):
    blocked: bool


def _company_or_404(store: CompanyStore, uid: str) -> CompanyProfile:
    company = store.get(uid)
    if company is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Company '{uid}' not found.",
        )
    return company


@router.get("/companies", response_model=List[CompanySummary])
async def list_companies(
    admin: Annotated[dict, Depends(get_super_admin)],
    session: Annotated[Session, Depends(get_session)],
    store: Annotated[CompanyStore, Depends(get_company_store)],
):
    counts = Counter(session.exec(select(Employee.company_id)).all())
    companies = sorted(store.list_all(), key=lambda c: c.company_name.lower())
    return [
        CompanySummary(**company.model_dump(), employee_count=counts.get(company.uid, 0))
        for company in companies
    ]


# Slots granted by support on top of (or instead of) purchased ones
@router.put("/companies/{uid}/plan", response_model=CompanyProfile)
async def grant_manual_slots(
    uid: str,
    grant: ManualGrant,
    admin: Annotated[dict, Depends(get_super_admin)],
    store: Annotated[CompanyStore, Depends(get_company_store)],
):
    company = _company_or_404(store, uid)
    fields = plan_update_for_manual_grant(
        company,
        grant.manual_slots,
        grant.manual_expires_at,
        datetime.now(timezone.utc),
        plan_status=grant.plan_status,
        price_per_employee=grant.price_per_employee,
    )
    store.update(uid, fields)
    logger.info(f"[SUPER_ADMIN] {admin.get('email')} granted {grant.manual_slots} manual slots to {uid}")
    return store.get(uid)


@router.put("/companies/{uid}/block", response_model=CompanyProfile)
async def set_blocked(
    uid: str,
    data: BlockPayload,
    admin: Annotated[dict, Depends(get_super_admin)],
    store: Annotated[CompanyStore, Depends(get_company_store)],
):
    company = _company_or_404(store, uid)
    store.update(uid, block_update(company, data.blocked))
    action = "blocked" if data.blocked else "unblocked"
    logger.info(f"[SUPER_ADMIN] {admin.get('email')} {action} company {uid}")
    return store.get(uid)


@router.delete("/companies/{uid}")
async def remove_company(
    uid: str,
    admin: Annotated[dict, Depends(get_super_admin)],
    session: Annotated[Session, Depends(get_session)],
    store: Annotated[CompanyStore, Depends(get_company_store)],
    attendance: Annotated[AttendanceStore, Depends(get_attendance_store)],
) -> Dict:
    _company_or_404(store, uid)
    deleted = delete_company(session, store, attendance, uid)
    logger.info(f"[SUPER_ADMIN] {admin.get('email')} deleted company {uid}")
    return {"status": "success", "message": f"Company '{uid}' deleted.", "deleted": deleted}
