import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlmodel import Session, select

from core.errors import FaceMatchError
from models.employee import Employee
from services.face_service import FaceCapability
from utils.face_match import FACE_MATCH_THRESHOLD, best_match

logger = logging.getLogger(__name__)


@dataclass
class Identification:
    employee: Optional[Employee] = None
    distance: Optional[float] = None
    error: Optional[FaceMatchError] = None

    @property
    def identified(self) -> bool:
        return self.employee is not None


def enrolled_employees(session: Session, company_id: str) -> List[Employee]:
    employees = session.exec(select(Employee).where(Employee.company_id == company_id)).all()
    return [e for e in employees if e.face_embedding]


def identify_employee(
    session: Session,
    face: FaceCapability,
    company_id: str,
    image: bytes,
    threshold: float = FACE_MATCH_THRESHOLD,
) -> Identification:
    """Open-set scan of one frame against every enrolled employee of a company.

    A miss is not fatal here, the caller simply tries another frame.
    """
    detection = face.detect_face(image)
    if detection is None:
        return Identification(error=FaceMatchError.NO_FACE_DETECTED)

    candidates = [(e, e.reference_embedding()) for e in enrolled_employees(session, company_id)]
    winner, distance = best_match(detection.embedding, candidates, threshold)
    if winner is None:
        logger.info(f"[IDENTIFY] No match among {len(candidates)} enrolled employees of {company_id}")
        return Identification(error=FaceMatchError.BELOW_THRESHOLD)

    logger.info(f"[IDENTIFY] ✅ Identified {winner.name} ({winner.id}) distance={distance:.3f}")
    return Identification(employee=winner, distance=distance)


def _digits(value: str) -> str:
    return "".join(ch for ch in (value or "") if ch.isdigit())


def pin_login(session: Session, company_id: str, cpf: str, pin: str) -> Optional[Employee]:
    """Fallback login by CPF + PIN for when the camera cannot identify someone."""
    wanted = _digits(cpf)
    if not wanted or not pin:
        return None

    employees = session.exec(select(Employee).where(Employee.company_id == company_id)).all()
    for employee in employees:
        if _digits(employee.cpf) == wanted:
            if employee.pin and employee.pin == pin:
                logger.info(f"[IDENTIFY] 🔑 PIN login for {employee.id}")
                return employee
            logger.warning(f"[IDENTIFY] ❌ Wrong PIN for CPF of employee {employee.id}")
            return None
    return None
