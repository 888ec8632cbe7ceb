from datetime import datetime, timedelta, timezone

from sqlmodel import Session, select

from conftest import CENTER, FakeCompanyStore
from models.attendance_record import AttendanceRecord
from models.company import CompanyProfile
from models.employee import Employee
from models.location import ServiceLocation
from services.company_admin_service import block_update, delete_company
from services.company_store import company_access_error

NOW = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)


def test_blocking_locks_the_company_out():
    company = CompanyProfile(uid="acme")
    blocked = company.model_copy(update=block_update(company, True, NOW))
    assert (blocked.is_blocked, blocked.plan_status) == (True, "blocked")
    assert "blocked" in company_access_error(blocked, NOW)


def test_unblocking_restores_the_plan_it_paid_for():
    valid = CompanyProfile(uid="acme", is_blocked=True, subscription_expires_at=NOW + timedelta(days=3))
    assert block_update(valid, False, NOW) == {"is_blocked": False, "plan_status": "active"}

    # Naive datetimes are read as UTC
    expired = CompanyProfile(uid="acme", is_blocked=True, subscription_expires_at=datetime(2024, 3, 1))
    assert block_update(expired, False, NOW) == {"is_blocked": False, "plan_status": "inactive"}


def test_delete_company_cascades(engine, store, company, employee, location):
    with Session(engine) as session:
        session.add(Employee(id="emp-9", company_id="globex", name="Outra Pessoa"))
        session.commit()
    store.add(
        AttendanceRecord(
            employee_id="emp-1", company_id="acme", location_id="loc-1", type="ENTRY",
            latitude=CENTER.latitude, longitude=CENTER.longitude,
        )
    )
    companies = FakeCompanyStore(company, CompanyProfile(uid="globex"))

    with Session(engine) as session:
        deleted = delete_company(session, companies, store, "acme")

    assert deleted == {"employees": 1, "locations": 1, "records": 1}
    assert companies.get("acme") is None
    assert companies.get("globex") is not None
    with Session(engine) as session:
        assert session.exec(select(Employee.id)).all() == ["emp-9"]
        assert session.exec(select(ServiceLocation)).all() == []
