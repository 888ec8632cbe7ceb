from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from core.deps import get_face_capability
from db.session import get_session
from services.enrollment_service import EnrollmentService
from services.face_service import FaceCapability


class EnrollmentPayload(BaseModel):
    image: str  # base64 or data URL


# Public endpoints behind the enrollment link sent to the employee
router = APIRouter()


@router.get("/{employee_id}")
def get_enrollment(employee_id: str, session: Session = Depends(get_session)):
    employee = EnrollmentService.get_pending(session, employee_id)
    return {"status": "success", "data": {"id": employee.id, "name": employee.name}}


@router.post("/{employee_id}")
def enroll_face(
    employee_id: str,
    data: EnrollmentPayload,
    session: Session = Depends(get_session),
    face: FaceCapability = Depends(get_face_capability),
):
    employee = EnrollmentService.enroll(session, face, employee_id, data.image)
    return {
        "status": "success",
        "message": "Face registered successfully.",
        "data": {"id": employee.id, "name": employee.name, "has_photo": employee.has_photo},
    }
