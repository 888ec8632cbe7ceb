import asyncio
import threading
import time
from datetime import datetime, timezone
from math import degrees
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

import numpy as np
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import models  # noqa: F401  registers every table
from models.company import CompanyProfile
from models.employee import Employee
from models.location import ServiceLocation
from models.shift import Shift
from services.attendance_store import AttendanceStore
from services.face_service import FaceDetection
from services.company_store import normalize_tenant_code
from utils.camera import CameraUnavailableError
from utils.geofence import EARTH_RADIUS_METERS, Coordinate
from utils.geolocation import PositionUnavailableError
from utils.mercadopago import PixCharge

TZ = "America/Sao_Paulo"  # UTC-3, no DST
CENTER = Coordinate(latitude=-23.550520, longitude=-46.633308)
REFERENCE = np.full(128, 0.1)


def offset_north(origin: Coordinate, meters: float) -> Coordinate:
    """A point `meters` due north of origin (haversine distance == meters)."""
    return Coordinate(origin.latitude + degrees(meters / EARTH_RADIUS_METERS), origin.longitude)


def probe_at(distance: float, reference: np.ndarray = REFERENCE) -> np.ndarray:
    """An embedding exactly `distance` away from `reference`."""
    probe = np.array(reference, dtype=np.float64)
    probe[0] += distance
    return probe


def local_time(hour: int, minute: int = 0, day: int = 4) -> datetime:
    """UTC instant of HH:MM Sao Paulo time on March `day`, 2024 (a Monday for day=4)."""
    return datetime(2024, 3, day, hour, minute, tzinfo=ZoneInfo(TZ)).astimezone(timezone.utc)


# --- Fakes for the external capabilities ---


class FakeFace:
    """Maps image bytes to an embedding; unknown bytes mean "no face"."""

    def __init__(self, faces: Optional[Dict[bytes, np.ndarray]] = None, delay: float = 0):
        self.faces = faces or {}
        self.delay = delay
        self.calls = 0
        self.max_concurrent = 0
        self._running = 0
        self._lock = threading.Lock()

    def detect_face(self, image: bytes) -> Optional[FaceDetection]:
        with self._lock:
            self.calls += 1
            self._running += 1
            self.max_concurrent = max(self.max_concurrent, self._running)
        try:
            if self.delay:
                time.sleep(self.delay)
            embedding = self.faces.get(image)
            return FaceDetection(embedding=embedding) if embedding is not None else None
        finally:
            with self._lock:
                self._running -= 1


class FakeCamera:
    def __init__(self, frames: List[bytes], fail_acquire: bool = False):
        self.frames = list(frames)
        self.fail_acquire = fail_acquire
        self.acquired = 0
        self.released = 0
        self.captured = 0

    @property
    def active(self) -> bool:
        return self.acquired > self.released

    async def acquire(self) -> None:
        if self.fail_acquire:
            raise CameraUnavailableError("no device")
        self.acquired += 1

    async def capture_frame(self) -> bytes:
        frame = self.frames[min(self.captured, len(self.frames) - 1)]
        self.captured += 1
        return frame

    async def release(self) -> None:
        self.released += 1


class FakeGeolocation:
    def __init__(self, coordinate: Optional[Coordinate] = None, error=None, delay: float = 0):
        self.coordinate = coordinate
        self.error = error
        self.delay = delay
        self.calls = 0

    async def get_current_position(self) -> Coordinate:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise PositionUnavailableError(self.error)
        return self.coordinate


class RecordingNotifier:
    def __init__(self):
        self.hints: List[str] = []
        self.notifications: List[tuple] = []

    def hint(self, message: str) -> None:
        self.hints.append(message)

    def notify(self, level: str, message: str) -> None:
        self.notifications.append((level, message))


class FakeCompanyStore:
    def __init__(self, *companies: CompanyProfile):
        self.companies = {c.uid: c for c in companies}
        self.updates: List[tuple] = []

    def get(self, uid: str) -> Optional[CompanyProfile]:
        return self.companies.get(uid)

    def find_by_tenant_code(self, tenant_code: str) -> Optional[CompanyProfile]:
        code = normalize_tenant_code(tenant_code)
        for company in self.companies.values():
            if company.tenant_code == code:
                return company
        return None

    def update(self, uid: str, fields: Dict) -> None:
        self.updates.append((uid, fields))
        self.companies[uid] = self.companies[uid].model_copy(update=fields)

    def create(self, company: CompanyProfile) -> CompanyProfile:
        self.companies[company.uid] = company
        return company

    def list_all(self) -> List[CompanyProfile]:
        return list(self.companies.values())

    def delete(self, uid: str) -> None:
        self.companies.pop(uid, None)


class FakePayments:
    def __init__(self, statuses: Optional[list] = None):
        # Each entry is a status string or an exception to raise
        self.statuses = list(statuses or [])
        self.charges: List[tuple] = []

    def create_pix_payment(self, amount, email, cpf, description) -> PixCharge:
        self.charges.append((amount, email, cpf, description))
        return PixCharge(payment_id=f"mp-{len(self.charges)}", qr_code="000201pix", qr_code_base64="aGk=")

    def get_payment_status(self, payment_id: str) -> str:
        status = self.statuses.pop(0) if self.statuses else "pending"
        if isinstance(status, Exception):
            raise status
        return status


# --- Fixtures ---


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return AttendanceStore(engine, TZ)


@pytest.fixture
def day_shift():
    return Shift(
        id="shift-day",
        company_id="acme",
        name="Day",
        entry_time="09:00",
        exit_time="17:00",
        break_start_time="12:00",
        break_end_time="13:00",
    )


@pytest.fixture
def location(engine):
    location = ServiceLocation(
        id="loc-1",
        company_id="acme",
        name="Head Office",
        address="Av. Paulista, 1000",
        latitude=CENTER.latitude,
        longitude=CENTER.longitude,
        radius_meters=100,
    )
    with Session(engine) as session:
        session.add(location)
        session.commit()
        session.refresh(location)
        session.expunge(location)
    return location


@pytest.fixture
def employee(engine, day_shift, location):
    employee = Employee(
        id="emp-1",
        company_id="acme",
        name="Ana Souza",
        cpf="123.456.789-00",
        pin="1234",
        location_ids=[location.id],
        shifts=[day_shift.model_dump()],
        photo_base64="data:image/jpeg;base64,YWxpY2U=",
        face_embedding=[float(v) for v in REFERENCE],
    )
    with Session(engine) as session:
        session.add(employee)
        session.commit()
        session.refresh(employee)
        session.expunge(employee)
    return employee


@pytest.fixture
def company():
    return CompanyProfile(
        uid="acme",
        company_name="Acme Ltda",
        email="owner@acme.test",
        tenant_code="ACME",
        max_employees=5,
    )
