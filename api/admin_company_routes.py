from typing import Annotated, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field as PydanticField
from sqlmodel import Session, select

from core.deps import (
    get_active_company,
    get_attendance_store,
    get_company_store,
    get_face_capability,
    get_firebase_claims,
)
from db.session import get_session
from models.company import CompanyProfile
from models.employee import DEFAULT_WORK_DAYS, Employee
from models.location import ServiceLocation
from models.shift import Shift
from services.attendance_store import AttendanceStore
from services.company_store import CompanyStore, normalize_tenant_code
from services.enrollment_service import EnrollmentService, enrollment_link
from services.face_service import FaceCapability

# --- Router Definition ---
router = APIRouter()


# --- Pydantic Data Models ---


class LocationBase(BaseModel):
    name: str = PydanticField(..., min_length=1)
    address: Optional[str] = None
    latitude: float = PydanticField(ge=-90, le=90)
    longitude: float = PydanticField(ge=-180, le=180)
    radius_meters: int = PydanticField(gt=0)  # Ensures radius is positive


class LocationUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = PydanticField(default=None, ge=-90, le=90)
    longitude: Optional[float] = PydanticField(default=None, ge=-180, le=180)
    radius_meters: Optional[int] = PydanticField(default=None, gt=0)


class EmployeeCreate(BaseModel):
    name: str = PydanticField(..., min_length=1)
    cpf: str = ""
    role: str = ""
    whatsapp: str = ""
    pin: str = PydanticField(..., pattern=r"^\d{4,}$")
    work_days: List[int] = PydanticField(default_factory=lambda: list(DEFAULT_WORK_DAYS))
    location_ids: List[str] = PydanticField(..., min_length=1)
    shifts: List[Shift] = PydanticField(default_factory=list)
    photo: str = PydanticField(..., min_length=1, description="Reference face photo (base64)")


class EmployeeUpdate(BaseModel):
    name: Optional[str] = PydanticField(default=None, min_length=1)
    cpf: Optional[str] = None
    role: Optional[str] = None
    whatsapp: Optional[str] = None
    pin: Optional[str] = PydanticField(default=None, pattern=r"^\d{4,}$")
    work_days: Optional[List[int]] = None
    location_ids: Optional[List[str]] = PydanticField(default=None, min_length=1)
    shifts: Optional[List[Shift]] = None
    photo: Optional[str] = None


class EmployeeRead(BaseModel):
    id: str
    name: str
    cpf: str
    role: str
    whatsapp: str
    work_days: List[int]
    location_ids: List[str]
    shifts: List[dict]
    has_photo: bool


class CompanyRegistration(BaseModel):
    company_name: str = PydanticField(..., min_length=1)
    cnpj: str = ""
    whatsapp: str = ""
    email: Optional[str] = None
    tenant_code: Optional[str] = PydanticField(default=None, min_length=3, max_length=32)


class TenantCodeUpdate(BaseModel):
    tenant_code: str = PydanticField(..., min_length=3, max_length=32)


def _employee_read(employee: Employee) -> EmployeeRead:
    return EmployeeRead(
        id=employee.id,
        name=employee.name,
        cpf=employee.cpf,
        role=employee.role,
        whatsapp=employee.whatsapp,
        work_days=employee.work_days or [],
        location_ids=employee.location_ids or [],
        shifts=employee.shifts or [],
        has_photo=employee.has_photo,
    )


def _owned_location(session: Session, company: CompanyProfile, location_id: str) -> ServiceLocation:
    location = session.get(ServiceLocation, location_id)
    if not location or location.company_id != company.uid:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Location '{location_id}' not found.",
        )
    return location


def _owned_employee(session: Session, company: CompanyProfile, employee_id: str) -> Employee:
    employee = session.get(Employee, employee_id)
    if not employee or employee.company_id != company.uid:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Employee '{employee_id}' not found.",
        )
    return employee


def _shift_dicts(company: CompanyProfile, shifts: List[Shift]) -> List[dict]:
    return [shift.model_copy(update={"company_id": company.uid}).model_dump() for shift in shifts]


# --- Company ---


# First sign-in of a company admin: creates companies/{uid}
@router.post("/register", response_model=CompanyProfile, status_code=status.HTTP_201_CREATED)
async def register_company(
    data: CompanyRegistration,
    claims: Annotated[Dict, Depends(get_firebase_claims)],
    store: Annotated[CompanyStore, Depends(get_company_store)],
):
    uid = claims["uid"]
    if store.get(uid) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Company already registered for this account.",
        )

    code = normalize_tenant_code(data.tenant_code) if data.tenant_code else None
    if code and store.find_by_tenant_code(code):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Tenant code '{code}' is already in use.",
        )

    company = CompanyProfile(
        uid=uid,
        company_name=data.company_name,
        cnpj=data.cnpj,
        whatsapp=data.whatsapp,
        email=data.email or claims.get("email") or "",
        tenant_code=code,
    )
    print(f"Registering company {uid} ({company.company_name})")
    return store.create(company)


@router.get("/profile", response_model=CompanyProfile)
async def read_profile(company: Annotated[CompanyProfile, Depends(get_active_company)]):
    return company


# Employees type this code on the kiosk to find their company
@router.put("/tenant-code")
async def update_tenant_code(
    data: TenantCodeUpdate,
    company: Annotated[CompanyProfile, Depends(get_active_company)],
    store: Annotated[CompanyStore, Depends(get_company_store)],
):
    code = normalize_tenant_code(data.tenant_code)
    existing = store.find_by_tenant_code(code)
    if existing and existing.uid != company.uid:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Tenant code '{code}' is already in use.",
        )
    store.update(company.uid, {"tenant_code": code})
    return {"status": "success", "data": {"tenant_code": code}}


# --- Locations ---


@router.post("/locations", response_model=ServiceLocation, status_code=status.HTTP_201_CREATED)
async def create_location(
    location_in: LocationBase,
    session: Annotated[Session, Depends(get_session)],
    company: Annotated[CompanyProfile, Depends(get_active_company)],
):
    location = ServiceLocation(company_id=company.uid, **location_in.model_dump())
    session.add(location)
    session.commit()
    session.refresh(location)
    print(f"Company {company.uid} created location {location.id}")
    return location


@router.get("/locations", response_model=List[ServiceLocation])
async def list_locations(
    session: Annotated[Session, Depends(get_session)],
    company: Annotated[CompanyProfile, Depends(get_active_company)],
):
    statement = (
        select(ServiceLocation)
        .where(ServiceLocation.company_id == company.uid)
        .order_by(ServiceLocation.name)
    )
    return session.exec(statement).all()


@router.get("/locations/{location_id}", response_model=ServiceLocation)
async def read_location(
    location_id: str,
    session: Annotated[Session, Depends(get_session)],
    company: Annotated[CompanyProfile, Depends(get_active_company)],
):
    return _owned_location(session, company, location_id)


@router.put("/locations/{location_id}", response_model=ServiceLocation)
async def update_location(
    location_id: str,
    location_update: LocationUpdate,
    session: Annotated[Session, Depends(get_session)],
    company: Annotated[CompanyProfile, Depends(get_active_company)],
):
    location = _owned_location(session, company, location_id)

    # exclude_unset=True ensures we only get fields the client actually sent
    for key, value in location_update.model_dump(exclude_unset=True).items():
        setattr(location, key, value)

    session.add(location)
    session.commit()
    session.refresh(location)
    return location


@router.delete("/locations/{location_id}")
async def delete_location(
    location_id: str,
    session: Annotated[Session, Depends(get_session)],
    company: Annotated[CompanyProfile, Depends(get_active_company)],
):
    location = _owned_location(session, company, location_id)

    # Unassign it from every employee of the company
    employees = session.exec(select(Employee).where(Employee.company_id == company.uid)).all()
    for employee in employees:
        if location_id in (employee.location_ids or []):
            employee.location_ids = [l for l in employee.location_ids if l != location_id]
            session.add(employee)

    session.delete(location)
    session.commit()
    return {"status": "success", "message": f"Location '{location_id}' deleted."}


# --- Employees ---


@router.post("/employees", response_model=EmployeeRead, status_code=status.HTTP_201_CREATED)
async def create_employee(
    employee_in: EmployeeCreate,
    session: Annotated[Session, Depends(get_session)],
    company: Annotated[CompanyProfile, Depends(get_active_company)],
    face: Annotated[FaceCapability, Depends(get_face_capability)],
):
    # Slot limit
    if company.max_employees is not None:
        current = len(
            session.exec(select(Employee.id).where(Employee.company_id == company.uid)).all()
        )
        if current >= company.max_employees:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Employee limit reached ({company.max_employees}). Purchase more slots.",
            )

    for location_id in employee_in.location_ids:
        _owned_location(session, company, location_id)

    photo, embedding = EnrollmentService.prepare_reference(face, employee_in.photo)

    employee = Employee(
        company_id=company.uid,
        name=employee_in.name,
        cpf=employee_in.cpf,
        role=employee_in.role,
        whatsapp=employee_in.whatsapp,
        pin=employee_in.pin,
        work_days=employee_in.work_days,
        location_ids=employee_in.location_ids,
        shifts=_shift_dicts(company, employee_in.shifts),
        photo_base64=photo,
        face_embedding=embedding,
    )
    session.add(employee)
    session.commit()
    session.refresh(employee)
    print(f"Company {company.uid} created employee {employee.id}")
    return _employee_read(employee)


@router.get("/employees", response_model=List[EmployeeRead])
async def list_employees(
    session: Annotated[Session, Depends(get_session)],
    company: Annotated[CompanyProfile, Depends(get_active_company)],
):
    employees = session.exec(
        select(Employee).where(Employee.company_id == company.uid).order_by(Employee.name)
    ).all()
    return [_employee_read(e) for e in employees]


@router.get("/employees/{employee_id}", response_model=EmployeeRead)
async def read_employee(
    employee_id: str,
    session: Annotated[Session, Depends(get_session)],
    company: Annotated[CompanyProfile, Depends(get_active_company)],
):
    return _employee_read(_owned_employee(session, company, employee_id))


@router.put("/employees/{employee_id}", response_model=EmployeeRead)
async def update_employee(
    employee_id: str,
    employee_update: EmployeeUpdate,
    session: Annotated[Session, Depends(get_session)],
    company: Annotated[CompanyProfile, Depends(get_active_company)],
    face: Annotated[FaceCapability, Depends(get_face_capability)],
):
    employee = _owned_employee(session, company, employee_id)
    update_data = employee_update.model_dump(exclude_unset=True)

    for location_id in update_data.get("location_ids") or []:
        _owned_location(session, company, location_id)

    if "shifts" in update_data:
        update_data["shifts"] = _shift_dicts(company, employee_update.shifts or [])

    # Replacing the reference photo re-derives the embedding
    photo = update_data.pop("photo", None)
    if photo:
        employee.photo_base64, employee.face_embedding = EnrollmentService.prepare_reference(
            face, photo
        )

    for key, value in update_data.items():
        setattr(employee, key, value)

    session.add(employee)
    session.commit()
    session.refresh(employee)
    return _employee_read(employee)


@router.delete("/employees/{employee_id}")
async def delete_employee(
    employee_id: str,
    session: Annotated[Session, Depends(get_session)],
    company: Annotated[CompanyProfile, Depends(get_active_company)],
    store: Annotated[AttendanceStore, Depends(get_attendance_store)],
):
    employee = _owned_employee(session, company, employee_id)
    session.delete(employee)
    session.commit()

    # Cascade: the employee's attendance timeline goes with them
    deleted_records = store.delete_for_employee(employee_id)
    return {
        "status": "success",
        "message": f"Employee '{employee_id}' deleted.",
        "deleted_records": deleted_records,
    }


@router.get("/employees/{employee_id}/enrollment-link")
async def get_enrollment_link(
    employee_id: str,
    session: Annotated[Session, Depends(get_session)],
    company: Annotated[CompanyProfile, Depends(get_active_company)],
):
    employee = _owned_employee(session, company, employee_id)
    return {
        "status": "success",
        "data": {"link": enrollment_link(employee.id), "has_photo": employee.has_photo},
    }
