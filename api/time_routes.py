import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import BaseModel
from sqlmodel import Session

from core.deps import (
    get_attendance_store,
    get_clock_session,
    get_company_store,
    get_face_capability,
    get_session_store,
)
from core.errors import FaceMatchError, FlowError, RecordError, describe
from core.settings import APP_TIMEZONE
from db.session import get_session
from models.employee import Employee
from models.location import ServiceLocation
from services.attendance_sequencer import AttendanceSequencer
from services.attendance_store import AttendanceStore
from services.clock_session import (
    ClockSession,
    FlowAlreadyActiveError,
    SessionNotFoundError,
    SessionStore,
)
from services.company_store import CompanyStore, company_access_error, normalize_tenant_code
from services.face_service import FaceCapability
from services.history_service import employee_history
from services.identification_service import identify_employee, pin_login
from services.verification_flow import ClockInFlow, FlowOutcome, FlowResult
from utils.camera import UploadedFrameCamera
from utils.geolocation import ReportedPosition
from utils.shift_window import active_shifts
from utils.timezone_helpers import from_utc_to_local

logger = logging.getLogger(__name__)

MAX_HISTORY_DAYS = 62

# --- Pydantic Models for Request Payloads ---


class PinLoginPayload(BaseModel):
    tenant_code: str
    cpf: str
    pin: str


class SessionSelectPayload(BaseModel):
    location_id: str
    shift_id: str


# Engine error -> HTTP status
ERROR_STATUS = {
    RecordError.SEQUENCE_MISMATCH: status.HTTP_409_CONFLICT,
    RecordError.PERSISTENCE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    FlowError.FLOW_ALREADY_ACTIVE: status.HTTP_409_CONFLICT,
    FaceMatchError.BELOW_THRESHOLD: status.HTTP_403_FORBIDDEN,
}

OUTCOME_STATUS = {
    FlowOutcome.SECURITY_ABORT: status.HTTP_403_FORBIDDEN,
    FlowOutcome.LOCATION_ABORT: status.HTTP_403_FORBIDDEN,
    FlowOutcome.CANCELLED: status.HTTP_409_CONFLICT,
    FlowOutcome.EXHAUSTED: status.HTTP_400_BAD_REQUEST,
}


def http_error_for(result: FlowResult) -> HTTPException:
    code = ERROR_STATUS.get(result.error) or OUTCOME_STATUS.get(result.outcome)
    return HTTPException(
        status_code=code or status.HTTP_400_BAD_REQUEST,
        detail={
            "outcome": result.outcome.value,
            "error": result.error.value if result.error else None,
            "message": result.message,
            "distance_meters": result.distance_meters,
        },
    )


def _employee_summary(employee: Employee) -> dict:
    return {
        "id": employee.id,
        "name": employee.name,
        "role": employee.role,
        "location_ids": employee.location_ids,
        "shifts": employee.shifts,
        "has_photo": employee.has_photo,
    }


def _resolve_company(store: CompanyStore, tenant_code: str):
    company = store.find_by_tenant_code(tenant_code)
    if company is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Company code not found. Check with your manager.",
        )
    reason = company_access_error(company)
    if reason:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=reason)
    return company


def _session_employee(session: Session, clock_session: ClockSession) -> Employee:
    employee = session.get(Employee, clock_session.employee_id)
    if not employee or employee.company_id != clock_session.company_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found.")
    return employee


# Defines API Endpoints
router = APIRouter()


# Facial identification: one frame, matched against every enrolled employee of the company
@router.post("/identify")
async def identify(
    tenant_code: Annotated[str, Form()],
    image: Annotated[UploadFile, File(description="Camera frame")],
    session: Session = Depends(get_session),
    store: CompanyStore = Depends(get_company_store),
    face: FaceCapability = Depends(get_face_capability),
    sessions: SessionStore = Depends(get_session_store),
):
    company = _resolve_company(store, tenant_code)
    frame = await image.read()
    if not frame:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty image.")

    result = await asyncio.to_thread(identify_employee, session, face, company.uid, frame)
    if not result.identified:
        # Not an error: the kiosk keeps scanning
        return {
            "status": "not_identified",
            "error": result.error.value,
            "message": describe(result.error),
        }

    clock_session = sessions.create(company.uid, result.employee.id)
    return {
        "status": "success",
        "token": clock_session.token,
        "distance": result.distance,
        "data": _employee_summary(result.employee),
    }


# Fallback login for when the camera cannot identify the employee
@router.post("/pin-login")
def login_with_pin(
    data: PinLoginPayload,
    session: Session = Depends(get_session),
    store: CompanyStore = Depends(get_company_store),
    sessions: SessionStore = Depends(get_session_store),
):
    company = _resolve_company(store, data.tenant_code)
    employee = pin_login(session, company.uid, data.cpf, data.pin)
    if employee is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid CPF or PIN."
        )

    clock_session = sessions.create(company.uid, employee.id)
    return {"status": "success", "token": clock_session.token, "data": _employee_summary(employee)}


@router.post("/logout")
def logout(
    clock_session: ClockSession = Depends(get_clock_session),
    sessions: SessionStore = Depends(get_session_store),
):
    sessions.end(clock_session.token)
    return {"status": "success"}


# Choose where and which shift the employee is clocking for
@router.post("/session/select")
def select_location_and_shift(
    data: SessionSelectPayload,
    session: Session = Depends(get_session),
    clock_session: ClockSession = Depends(get_clock_session),
    sessions: SessionStore = Depends(get_session_store),
):
    employee = _session_employee(session, clock_session)

    location = session.get(ServiceLocation, data.location_id)
    if (
        not location
        or location.company_id != clock_session.company_id
        or location.id not in (employee.location_ids or [])
    ):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Location not found.")

    shift = employee.find_shift(data.shift_id)
    if shift is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Shift not found.")

    sessions.select(clock_session.token, location.id, shift.id)
    return {
        "status": "success",
        "data": {"location_id": location.id, "location_name": location.name, "shift": shift},
    }


# Shifts offered for selection right now
@router.get("/active-shifts")
def get_active_shifts(
    session: Session = Depends(get_session),
    clock_session: ClockSession = Depends(get_clock_session),
):
    employee = _session_employee(session, clock_session)
    local_now = from_utc_to_local(datetime.now(timezone.utc), APP_TIMEZONE)
    return {"status": "success", "data": active_shifts(employee.shift_list(), local_now)}


@router.get("/next-action")
def get_next_action(
    clock_session: ClockSession = Depends(get_clock_session),
    store: AttendanceStore = Depends(get_attendance_store),
):
    sequencer = AttendanceSequencer(store, APP_TIMEZONE)
    action = sequencer.next_action_for(clock_session.employee_id, datetime.now(timezone.utc))
    return {"status": "success", "data": action.value}


# Get Today's Records (newest first)
@router.get("/today")
def get_todays_records(
    clock_session: ClockSession = Depends(get_clock_session),
    store: AttendanceStore = Depends(get_attendance_store),
):
    records = store.todays_records(clock_session.employee_id, datetime.now(timezone.utc))
    return {"status": "success", "data": records}


# Run one verification flow on a single uploaded frame
@router.post("/punch")
async def punch(
    image: Annotated[UploadFile, File(description="Camera frame")],
    latitude: Annotated[Optional[float], Form()] = None,
    longitude: Annotated[Optional[float], Form()] = None,
    session: Session = Depends(get_session),
    clock_session: ClockSession = Depends(get_clock_session),
    sessions: SessionStore = Depends(get_session_store),
    store: AttendanceStore = Depends(get_attendance_store),
    face: FaceCapability = Depends(get_face_capability),
):
    employee = _session_employee(session, clock_session)
    location = session.get(ServiceLocation, clock_session.location_id) if clock_session.location_id else None
    shift = employee.find_shift(clock_session.shift_id) if clock_session.shift_id else None

    flow = ClockInFlow(
        employee=employee,
        location=location,
        shift=shift,
        sequencer=AttendanceSequencer(store, APP_TIMEZONE),
        geolocation=ReportedPosition(latitude, longitude),
        camera=UploadedFrameCamera(await image.read()),
        face=face,
        max_samples=1,
    )

    try:
        sessions.begin_flow(clock_session.token, flow)
    except FlowAlreadyActiveError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=describe(FlowError.FLOW_ALREADY_ACTIVE),
        )
    except SessionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired. Identify yourself again.",
        )

    try:
        result = await flow.run()
    finally:
        sessions.end_flow(clock_session.token, flow)

    if result.outcome != FlowOutcome.SUCCESS:
        logger.warning(
            f"[PUNCH] {employee.id}: {result.outcome.value} "
            f"({result.error.value if result.error else '-'})"
        )
        raise http_error_for(result)

    return {"status": "success", "message": result.message, "data": result.record}


# Records in a local date range, summarized per day
@router.get("/history")
def get_history(
    start: date = Query(...),
    end: date = Query(...),
    session: Session = Depends(get_session),
    clock_session: ClockSession = Depends(get_clock_session),
    store: AttendanceStore = Depends(get_attendance_store),
):
    if end < start:
        raise HTTPException(status_code=400, detail="End date must not be before start date.")
    if end - start > timedelta(days=MAX_HISTORY_DAYS):
        raise HTTPException(status_code=400, detail=f"Date range limited to {MAX_HISTORY_DAYS} days.")

    employee = _session_employee(session, clock_session)
    summaries = employee_history(
        store, employee.id, employee.shift_list(), start, end, APP_TIMEZONE
    )
    return {"status": "success", "data": summaries}
