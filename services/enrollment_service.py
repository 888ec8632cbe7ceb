import logging
from typing import List, Tuple

from fastapi import HTTPException, status
from sqlmodel import Session

from core.settings import PUBLIC_BASE_URL
from models.employee import Employee
from services.face_service import FaceCapability, decode_image, embedding_to_list, encode_image

logger = logging.getLogger(__name__)


def enrollment_link(employee_id: str, base_url: str = PUBLIC_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}/register-face/{employee_id}"


class EnrollmentService:

    @staticmethod
    def prepare_reference(face: FaceCapability, image_base64: str) -> Tuple[str, List[float]]:
        """Validate a reference photo and extract its embedding."""
        try:
            image = decode_image(image_base64)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid image data.",
            )

        detection = face.detect_face(image)
        if detection is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="No face detected in the photo. Use a clear, well lit picture.",
            )
        return encode_image(image), embedding_to_list(detection.embedding)

    @staticmethod
    def get_pending(session: Session, employee_id: str) -> Employee:
        employee = session.get(Employee, employee_id)
        if not employee:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Employee not found.",
            )
        # One-time: a registered face can only be replaced by an admin
        if employee.has_photo:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Face already registered for this employee.",
            )
        return employee

    @staticmethod
    def enroll(
        session: Session, face: FaceCapability, employee_id: str, image_base64: str
    ) -> Employee:
        employee = EnrollmentService.get_pending(session, employee_id)
        photo, embedding = EnrollmentService.prepare_reference(face, image_base64)

        employee.photo_base64 = photo
        employee.face_embedding = embedding
        session.add(employee)
        session.commit()
        session.refresh(employee)

        logger.info(f"[ENROLL] ✅ Face registered for employee {employee.id}")
        return employee
