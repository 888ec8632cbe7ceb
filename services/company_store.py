import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from google.cloud.firestore_v1.base_query import FieldFilter

from core.firebase import get_firestore_client
from models.company import CompanyProfile

logger = logging.getLogger(__name__)

COMPANIES_COLLECTION = "companies"

# CompanyProfile field -> Firestore document key
FIELD_MAP = {
    "cnpj": "cnpj",
    "company_name": "companyName",
    "whatsapp": "whatsapp",
    "email": "email",
    "tenant_code": "tenantCode",
    "plan_status": "planStatus",
    "is_blocked": "isBlocked",
    "price_per_employee": "pricePerEmployee",
    "purchased_slots": "purchasedSlots",
    "purchased_expires_at": "purchasedExpiresAt",
    "manual_slots": "manualSlots",
    "manual_expires_at": "manualExpiresAt",
    "max_employees": "maxEmployees",
    "subscription_expires_at": "subscriptionExpiresAt",
}

DATETIME_FIELDS = {
    "purchased_expires_at",
    "manual_expires_at",
    "subscription_expires_at",
}


def normalize_tenant_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


class CompanyStore(Protocol):
    def get(self, uid: str) -> Optional[CompanyProfile]: ...

    def find_by_tenant_code(self, tenant_code: str) -> Optional[CompanyProfile]: ...

    def update(self, uid: str, fields: Dict) -> None: ...

    def create(self, company: CompanyProfile) -> CompanyProfile: ...

    def list_all(self) -> List[CompanyProfile]: ...

    def delete(self, uid: str) -> None: ...


def profile_from_document(uid: str, data: Dict) -> CompanyProfile:
    values = {"uid": uid}
    for field_name, key in FIELD_MAP.items():
        if data.get(key) is not None:
            values[field_name] = data[key]
    return CompanyProfile.model_validate(values)


def document_from_fields(fields: Dict) -> Dict:
    document = {}
    for field_name, value in fields.items():
        key = FIELD_MAP[field_name]
        # Stored as ISO strings, as the web dashboard writes them
        if field_name in DATETIME_FIELDS and isinstance(value, datetime):
            value = value.isoformat()
        document[key] = value
    return document


class FirestoreCompanyStore:
    """Company profiles live in Firestore at companies/{uid}."""

    def __init__(self, client=None):
        self._client = client

    @property
    def db(self):
        if self._client is None:
            self._client = get_firestore_client()
        return self._client

    def get(self, uid: str) -> Optional[CompanyProfile]:
        snapshot = self.db.collection(COMPANIES_COLLECTION).document(uid).get()
        if not snapshot.exists:
            return None
        return profile_from_document(snapshot.id, snapshot.to_dict())

    def find_by_tenant_code(self, tenant_code: str) -> Optional[CompanyProfile]:
        code = normalize_tenant_code(tenant_code)
        if not code:
            return None
        query = (
            self.db.collection(COMPANIES_COLLECTION)
            .where(filter=FieldFilter("tenantCode", "==", code))
            .limit(1)
        )
        for doc in query.stream():
            return profile_from_document(doc.id, doc.to_dict())
        return None

    def update(self, uid: str, fields: Dict) -> None:
        self.db.collection(COMPANIES_COLLECTION).document(uid).update(
            document_from_fields(fields)
        )
        logger.info(f"[COMPANY] Updated company {uid}: {sorted(fields)}")

    def create(self, company: CompanyProfile) -> CompanyProfile:
        fields = company.model_dump(exclude={"uid"}, exclude_none=True)
        document = document_from_fields(fields)
        document["uid"] = company.uid
        self.db.collection(COMPANIES_COLLECTION).document(company.uid).set(document)
        logger.info(f"[COMPANY] ✅ Registered company {company.uid} ({company.company_name})")
        return company

    def list_all(self) -> List[CompanyProfile]:
        return [
            profile_from_document(doc.id, doc.to_dict())
            for doc in self.db.collection(COMPANIES_COLLECTION).stream()
        ]

    def delete(self, uid: str) -> None:
        self.db.collection(COMPANIES_COLLECTION).document(uid).delete()
        logger.info(f"[COMPANY] 🗑️ Deleted company {uid}")


def company_access_error(company: CompanyProfile, now: Optional[datetime] = None) -> Optional[str]:
    """Reason a company may not use the service right now, or None."""
    now = now or datetime.now(timezone.utc)
    if company.is_blocked or company.plan_status == "blocked":
        return "Company account is blocked. Contact support."
    expires_at = company.subscription_expires_at
    if expires_at is not None:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at < now:
            return "Company plan has expired. Renew the subscription to continue."
    return None
