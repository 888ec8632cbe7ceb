from datetime import datetime
from typing import Optional

from pydantic import BaseModel

DEFAULT_PRICE_PER_EMPLOYEE = 19.90


# Mirrors the Firestore companies/{uid} document
class CompanyProfile(BaseModel):
    uid: str
    cnpj: str = ""
    company_name: str = ""
    whatsapp: str = ""
    email: str = ""
    tenant_code: Optional[str] = None
    plan_status: str = "active"  # active | inactive | blocked
    is_blocked: bool = False
    price_per_employee: float = DEFAULT_PRICE_PER_EMPLOYEE
    purchased_slots: int = 0
    purchased_expires_at: Optional[datetime] = None
    manual_slots: int = 0
    manual_expires_at: Optional[datetime] = None
    max_employees: Optional[int] = None
    subscription_expires_at: Optional[datetime] = None
