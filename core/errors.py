"""Explicit error values returned by the attendance engine.

Engine functions never raise for expected failures; they hand one of these
back and let the caller (the verification flow or the HTTP layer) decide how
to surface it.
"""

from enum import Enum


class FaceMatchError(str, Enum):
    # Retryable: the caller samples another frame
    NO_FACE_DETECTED = "no_face_detected"
    # Fatal for this attempt: employee was never enrolled
    NO_REFERENCE_EMBEDDING = "no_reference_embedding"
    # Retryable during identification, fatal during re-verification
    BELOW_THRESHOLD = "below_threshold"


class PositionError(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


class RecordError(str, Enum):
    MISSING_LOCATION = "missing_location"
    MISSING_SHIFT = "missing_shift"
    NOT_IDENTIFIED = "not_identified"
    POSITION_UNAVAILABLE = "position_unavailable"
    SEQUENCE_MISMATCH = "sequence_mismatch"
    PERSISTENCE_ERROR = "persistence_error"


class FlowError(str, Enum):
    FLOW_ALREADY_ACTIVE = "flow_already_active"
    CAMERA_UNAVAILABLE = "camera_unavailable"


# User-facing text, only ever rendered by the orchestration / HTTP layers
ERROR_MESSAGES = {
    FaceMatchError.NO_FACE_DETECTED: "No face detected. Adjust your position.",
    FaceMatchError.NO_REFERENCE_EMBEDDING: "Reference photo missing. Ask your manager to enroll your face.",
    FaceMatchError.BELOW_THRESHOLD: "Security error: the detected face does not match the identified employee.",
    PositionError.PERMISSION_DENIED: "Location permission denied. Allow location access and try again.",
    PositionError.UNAVAILABLE: "Location unavailable. Check that GPS is enabled.",
    PositionError.TIMEOUT: "Timed out while getting your location. Try again.",
    RecordError.MISSING_LOCATION: "Select your work location before clocking in.",
    RecordError.MISSING_SHIFT: "Select your work shift before clocking in.",
    RecordError.NOT_IDENTIFIED: "Employee not identified. Complete facial identification first.",
    RecordError.POSITION_UNAVAILABLE: "Could not obtain your location.",
    RecordError.SEQUENCE_MISMATCH: "This attendance type is not the next one for today.",
    RecordError.PERSISTENCE_ERROR: "Could not save the attendance record. Try again.",
    FlowError.FLOW_ALREADY_ACTIVE: "A clock-in is already in progress.",
    FlowError.CAMERA_UNAVAILABLE: "Could not access the camera.",
}


def describe(error) -> str:
    """Return the user-facing message for an engine error value."""
    return ERROR_MESSAGES.get(error, "Unexpected error.")
