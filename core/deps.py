from functools import lru_cache
from typing import Annotated, Dict, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from core.firebase import verify_id_token
from core.settings import APP_TIMEZONE, SUPER_ADMIN_EMAILS
from db.session import engine
from models.company import CompanyProfile
from services.attendance_store import AttendanceStore
from services.clock_session import ClockSession, SessionStore, session_store
from services.company_store import CompanyStore, FirestoreCompanyStore, company_access_error
from services.face_service import FaceCapability, FaceRecognitionCapability

# Standard credentials exception
CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)


# Shared singletons, overridable in tests through app.dependency_overrides
@lru_cache(maxsize=1)
def get_company_store() -> CompanyStore:
    return FirestoreCompanyStore()


@lru_cache(maxsize=1)
def get_face_capability() -> FaceCapability:
    return FaceRecognitionCapability()


@lru_cache(maxsize=1)
def get_attendance_store() -> AttendanceStore:
    return AttendanceStore(engine, APP_TIMEZONE)


def get_session_store() -> SessionStore:
    return session_store


# Decoded Firebase ID token of the caller
async def get_firebase_claims(request: Request) -> Dict:

    # 1) Extract & Analyze Authorization Header
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
        )
    token = auth_header.split(" ", 1)[1]

    # 2) Verify This Points to a Real Account
    try:
        decoded = verify_id_token(token)
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token"
        )
    uid = decoded.get("uid")
    if not uid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Token did not contain uid"
        )
    return decoded


# Company admin: Firebase ID token whose uid owns companies/{uid}
async def get_current_company(
    claims: Annotated[Dict, Depends(get_firebase_claims)],
    store: Annotated[CompanyStore, Depends(get_company_store)],
) -> CompanyProfile:
    company = store.get(claims["uid"])
    if company is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Company profile not found",
        )
    return company


# Same as above, but refuses blocked / expired companies
async def get_active_company(
    company: Annotated[CompanyProfile, Depends(get_current_company)],
) -> CompanyProfile:
    reason = company_access_error(company)
    if reason:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=reason)
    return company


# Platform support: signed in with one of the SUPER_ADMIN_EMAILS accounts
async def get_super_admin(claims: Annotated[Dict, Depends(get_firebase_claims)]) -> Dict:
    email = (claims.get("email") or "").lower()
    if not email or email not in SUPER_ADMIN_EMAILS:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Super admin access required"
        )
    return claims


# Kiosk employee: opaque token handed out by /time/identify or /time/pin-login
async def get_clock_session(
    sessions: Annotated[SessionStore, Depends(get_session_store)],
    x_session_token: Annotated[Optional[str], Header(alias="X-Session-Token")] = None,
) -> ClockSession:
    if not x_session_token:
        raise CREDENTIALS_EXCEPTION
    clock_session = sessions.get(x_session_token)
    if clock_session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired. Identify yourself again.",
        )
    return clock_session
