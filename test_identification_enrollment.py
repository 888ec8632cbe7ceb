import base64

import pytest
from fastapi import HTTPException
from sqlmodel import Session

from conftest import REFERENCE, FakeFace, probe_at
from core.errors import FaceMatchError
from models.employee import Employee
from services.enrollment_service import EnrollmentService, enrollment_link
from services.identification_service import identify_employee, pin_login

ANA = b"ana-frame"
BRUNO = b"bruno-frame"


@pytest.fixture
def bruno(engine):
    bruno = Employee(
        id="emp-2",
        company_id="acme",
        name="Bruno Lima",
        cpf="98765432100",
        pin="9999",
        face_embedding=[float(v) for v in probe_at(0.45)],
    )
    pending = Employee(id="emp-3", company_id="acme", name="Carla Dias")
    other_tenant = Employee(
        id="emp-x", company_id="globex", name="Dan", face_embedding=[float(v) for v in REFERENCE]
    )
    with Session(engine) as session:
        for e in (bruno, pending, other_tenant):
            session.add(e)
        session.commit()
    return bruno


def test_identify_picks_the_closest_enrolled_employee(engine, employee, bruno):
    face = FakeFace({ANA: probe_at(0.05), BRUNO: probe_at(0.42)})
    with Session(engine) as session:
        ana = identify_employee(session, face, "acme", ANA)
        second = identify_employee(session, face, "acme", BRUNO)

    assert ana.identified and ana.employee.id == "emp-1"
    # 0.42 from Ana's reference, 0.03 from Bruno's
    assert second.employee.id == "emp-2"


def test_identify_miss_is_not_fatal(engine, employee):
    face = FakeFace({ANA: probe_at(0.9)})
    with Session(engine) as session:
        miss = identify_employee(session, face, "acme", ANA)
        blank = identify_employee(session, face, "acme", b"nothing")

    assert miss.error == FaceMatchError.BELOW_THRESHOLD and not miss.identified
    assert blank.error == FaceMatchError.NO_FACE_DETECTED


def test_identify_is_scoped_to_the_company(engine, employee, bruno):
    face = FakeFace({ANA: REFERENCE})
    with Session(engine) as session:
        result = identify_employee(session, face, "globex", ANA)
    assert result.employee.id == "emp-x"


def test_pin_login(engine, employee, bruno):
    with Session(engine) as session:
        assert pin_login(session, "acme", "12345678900", "1234").id == "emp-1"
        assert pin_login(session, "acme", "987.654.321-00", "9999").id == "emp-2"
        assert pin_login(session, "acme", "12345678900", "0000") is None
        assert pin_login(session, "globex", "12345678900", "1234") is None
        assert pin_login(session, "acme", "", "1234") is None


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


def test_enroll_once(engine, bruno):
    face = FakeFace({ANA: probe_at(0.0)})
    with Session(engine) as session:
        employee = EnrollmentService.enroll(session, face, "emp-3", "data:image/png;base64," + _b64(ANA))
        assert employee.has_photo
        assert employee.reference_embedding() is not None

        with pytest.raises(HTTPException) as exc:
            EnrollmentService.enroll(session, face, "emp-3", _b64(ANA))
        assert exc.value.status_code == 409


def test_enroll_rejects_unknown_employee_bad_image_and_no_face(engine, bruno):
    face = FakeFace({ANA: probe_at(0.0)})
    with Session(engine) as session:
        with pytest.raises(HTTPException) as unknown:
            EnrollmentService.enroll(session, face, "nobody", _b64(ANA))
        with pytest.raises(HTTPException) as invalid:
            EnrollmentService.enroll(session, face, "emp-3", "%%%not-base64")
        with pytest.raises(HTTPException) as no_face:
            EnrollmentService.enroll(session, face, "emp-3", _b64(b"wall"))

        assert (unknown.value.status_code, invalid.value.status_code, no_face.value.status_code) == (404, 400, 400)
        assert not session.get(Employee, "emp-3").has_photo


def test_enrollment_link():
    assert enrollment_link("emp-3", "https://ponto.example.com/") == "https://ponto.example.com/register-face/emp-3"
