import asyncio
import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class CameraUnavailableError(Exception):
    """Raised when the camera device cannot be opened or read."""


class CameraProvider(Protocol):
    """Exclusively owned video source: acquire, capture stills, release."""

    async def acquire(self) -> None: ...

    async def capture_frame(self) -> bytes: ...

    async def release(self) -> None: ...


# A single still uploaded by the client; every capture returns the same image
class UploadedFrameCamera:
    def __init__(self, image: bytes):
        self.image = image
        self.active = False

    async def acquire(self) -> None:
        if not self.image:
            raise CameraUnavailableError("Empty image upload")
        self.active = True

    async def capture_frame(self) -> bytes:
        return self.image

    async def release(self) -> None:
        self.active = False


class OpenCVCamera:
    """Local capture device (kiosk deployments) read through OpenCV."""

    def __init__(self, device_id: int = 0, jpeg_quality: int = 70):
        self.device_id = device_id
        self.jpeg_quality = jpeg_quality
        self._capture = None

    async def acquire(self) -> None:
        import cv2

        capture = await asyncio.to_thread(cv2.VideoCapture, self.device_id)
        if not capture.isOpened():
            raise CameraUnavailableError(f"Could not open camera {self.device_id}")
        self._capture = capture
        logger.info(f"[CAMERA] 📷 Camera {self.device_id} acquired")

    async def capture_frame(self) -> bytes:
        import cv2

        if self._capture is None:
            raise CameraUnavailableError("Camera not acquired")
        ok, frame = await asyncio.to_thread(self._capture.read)
        if not ok:
            raise CameraUnavailableError("Failed to read frame")
        ok, buffer = cv2.imencode(
            ".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality]
        )
        if not ok:
            raise CameraUnavailableError("Failed to encode frame")
        return buffer.tobytes()

    async def release(self) -> None:
        capture: Optional[object] = self._capture
        self._capture = None
        if capture is not None:
            await asyncio.to_thread(capture.release)
            logger.info(f"[CAMERA] 🛑 Camera {self.device_id} released")
