"""
Face detection / embedding capability.

The engine only needs "given an image, zero or one face embedding plus its
landmarks". Production uses the `face_recognition` (dlib) models; tests plug
in fakes that satisfy the same protocol.
"""

import base64
import binascii
import io
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Tuple

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class FaceDetection:
    embedding: np.ndarray
    landmarks: Dict[str, List[Tuple[int, int]]] = field(default_factory=dict)


class FaceCapability(Protocol):
    def detect_face(self, image: bytes) -> Optional[FaceDetection]: ...


class FaceRecognitionCapability:
    """dlib-backed detector; CPU bound, callers run it off the event loop."""

    def __init__(self, model: str = "hog"):
        self.model = model

    def detect_face(self, image: bytes) -> Optional[FaceDetection]:
        import face_recognition as fr

        pixels = fr.load_image_file(io.BytesIO(image))
        locations = fr.face_locations(pixels, model=self.model)
        if not locations:
            return None
        if len(locations) > 1:
            logger.warning(f"[FACE] Multiple faces found ({len(locations)}), using first one")

        location = locations[:1]
        encodings = fr.face_encodings(pixels, known_face_locations=location)
        if not encodings:
            return None
        landmarks = fr.face_landmarks(pixels, face_locations=location)
        return FaceDetection(
            embedding=encodings[0],
            landmarks=landmarks[0] if landmarks else {},
        )


def decode_image(data: str) -> bytes:
    """Decode a base64 image, accepting `data:image/...;base64,` URLs."""
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("Invalid base64 image") from e


def encode_image(image: bytes, content_type: str = "image/jpeg") -> str:
    return f"data:{content_type};base64,{base64.b64encode(image).decode('ascii')}"


def embedding_to_list(embedding: np.ndarray) -> List[float]:
    return [float(v) for v in np.asarray(embedding).ravel()]
