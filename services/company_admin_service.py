"""
Support-side operations over whole companies: blocking and cascade deletion.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlmodel import Session, select

from models.company import CompanyProfile
from models.employee import Employee
from models.location import ServiceLocation
from services.attendance_store import AttendanceStore
from services.company_store import CompanyStore

logger = logging.getLogger(__name__)


def block_update(company: CompanyProfile, blocked: bool, now: Optional[datetime] = None) -> Dict:
    """Company fields to write when support blocks or unblocks a company.

    Unblocking restores `active` only while the subscription is still valid.
    """
    if blocked:
        return {"is_blocked": True, "plan_status": "blocked"}

    now = now or datetime.now(timezone.utc)
    expires_at = company.subscription_expires_at
    if expires_at is not None and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    expired = expires_at is not None and expires_at < now
    return {"is_blocked": False, "plan_status": "inactive" if expired else "active"}


def delete_company(
    session: Session,
    companies: CompanyStore,
    attendance: AttendanceStore,
    uid: str,
) -> Dict[str, int]:
    """Delete a company with its employees, locations and attendance records."""
    employees = session.exec(select(Employee).where(Employee.company_id == uid)).all()
    locations = session.exec(select(ServiceLocation).where(ServiceLocation.company_id == uid)).all()
    for row in [*employees, *locations]:
        session.delete(row)
    session.commit()
    counts = {"employees": len(employees), "locations": len(locations)}

    counts["records"] = attendance.delete_for_company(uid)
    companies.delete(uid)
    logger.info(f"[COMPANY_ADMIN] 🗑️ Deleted company {uid}: {counts}")
    return counts
