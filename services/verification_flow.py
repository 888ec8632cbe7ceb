"""
Clock-in verification flow.

One flow = one attempt to record a single attendance event:

    geofence check -> camera sampling -> face re-verification -> record

The employee was already identified earlier in the session; sampling here
re-verifies that the person in front of the camera is still that employee.
A mismatch is a security failure and ends the flow, unlike initial
identification where a non-match just means "keep trying".
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Protocol, Sequence, Set

from sqlalchemy.exc import SQLAlchemyError

from core.errors import FaceMatchError, FlowError, PositionError, RecordError, describe
from core.settings import POSITION_TIMEOUT_SECONDS, SAMPLE_INTERVAL_SECONDS
from models.attendance_record import AttendanceRecord
from models.employee import Employee
from models.location import ServiceLocation
from models.shift import Shift
from services.attendance_sequencer import AttendanceSequencer, next_action
from services.face_service import FaceCapability, encode_image
from utils.camera import CameraProvider, CameraUnavailableError
from utils.face_match import FACE_MATCH_THRESHOLD, verify_against_reference
from utils.geofence import Coordinate, distance_meters, is_within_radius
from utils.geolocation import GeolocationProvider, obtain_position

logger = logging.getLogger(__name__)


class FlowOutcome(str, Enum):
    SUCCESS = "success"
    CANCELLED = "cancelled"
    SECURITY_ABORT = "security_abort"
    LOCATION_ABORT = "location_abort"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


@dataclass
class FlowResult:
    outcome: FlowOutcome
    record: Optional[AttendanceRecord] = None
    error: Optional[Enum] = None
    message: str = ""
    distance_meters: Optional[int] = None
    face_distance: Optional[float] = None


class FlowNotifier(Protocol):
    """User feedback channel (scan hints, toasts, sounds)."""

    def hint(self, message: str) -> None: ...

    def notify(self, level: str, message: str) -> None: ...


class LoggingNotifier:
    def hint(self, message: str) -> None:
        logger.debug(f"[CLOCK_FLOW] hint: {message}")

    def notify(self, level: str, message: str) -> None:
        log = logger.error if level == "error" else logger.info
        log(f"[CLOCK_FLOW] {level}: {message}")


TodaysRecords = Callable[[datetime], Sequence[AttendanceRecord]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ClockInFlow:
    def __init__(
        self,
        *,
        employee: Optional[Employee],
        location: Optional[ServiceLocation],
        shift: Optional[Shift],
        sequencer: AttendanceSequencer,
        geolocation: GeolocationProvider,
        camera: CameraProvider,
        face: FaceCapability,
        todays_records: Optional[TodaysRecords] = None,
        notifier: Optional[FlowNotifier] = None,
        clock: Callable[[], datetime] = _utc_now,
        sample_interval: float = SAMPLE_INTERVAL_SECONDS,
        position_timeout: float = POSITION_TIMEOUT_SECONDS,
        threshold: float = FACE_MATCH_THRESHOLD,
        max_samples: Optional[int] = None,
    ):
        self.employee = employee
        self.location = location
        self.shift = shift
        self.sequencer = sequencer
        self.geolocation = geolocation
        self.camera = camera
        self.face = face
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock
        self.sample_interval = sample_interval
        self.position_timeout = position_timeout
        self.threshold = threshold
        self.max_samples = max_samples

        if todays_records is None and employee is not None:
            todays_records = lambda now: sequencer.store.todays_records(employee.id, now)
        self.todays_records = todays_records

        self.position: Optional[Coordinate] = None
        self.samples_taken = 0

        self._result: Optional[asyncio.Future] = None
        self._driver: Optional[asyncio.Task] = None
        self._ticker: Optional[asyncio.Task] = None
        self._samples: Set[asyncio.Task] = set()
        self._camera_held = False
        # Single-flight: one sample in progress at a time
        self._busy = False
        # Set once a match starts recording; later samples are suppressed
        self._recording = False

    # --- Lifecycle ---

    @property
    def done(self) -> bool:
        return self._result is not None and self._result.done()

    async def run(self) -> FlowResult:
        if self._result is not None:
            raise RuntimeError("A ClockInFlow instance can only run once")

        self._result = asyncio.get_running_loop().create_future()
        self._driver = asyncio.create_task(self._drive())
        try:
            return await self._result
        finally:
            await self._teardown()

    def cancel(self) -> None:
        if self._finish(FlowResult(FlowOutcome.CANCELLED, message="Clock-in cancelled.")):
            logger.info("[CLOCK_FLOW] 🛑 Cancelled by user")

    def _finish(self, result: FlowResult) -> bool:
        if self._result is None or self._result.done():
            return False
        self._result.set_result(result)
        return True

    def _fail(self, error: Enum, **extra) -> None:
        message = describe(error)
        self.notifier.notify("error", message)
        self._finish(FlowResult(FlowOutcome.FAILED, error=error, message=message, **extra))

    async def _teardown(self) -> None:
        # (a) stop the sampling timer and anything still driving the flow
        pending = [t for t in (self._ticker, self._driver) if t is not None and not t.done()]
        for task in pending:
            task.cancel()
        # In-flight samples are left to finish on their own: a write already
        # handed to storage is not rolled back, its result is just ignored.
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        # (b) release the camera
        if self._camera_held:
            self._camera_held = False
            try:
                await self.camera.release()
            except CameraUnavailableError as e:
                logger.warning(f"[CLOCK_FLOW] ⚠️ Camera release failed: {e}")

    # --- Steps ---

    async def _drive(self) -> None:
        # Preconditions, reported before any device is touched
        if self.employee is None:
            return self._fail(RecordError.NOT_IDENTIFIED)
        if self.location is None:
            return self._fail(RecordError.MISSING_LOCATION)
        if self.shift is None:
            return self._fail(RecordError.MISSING_SHIFT)

        # 1) Geofence, strictly before any camera activity
        fix = await obtain_position(self.geolocation, self.position_timeout)
        if self.done:
            return
        if fix.error is not None:
            return self._fail(fix.error)

        self.position = fix.coordinate
        distance = distance_meters(self.position, self.location.coordinate)
        if not is_within_radius(self.position, self.location.coordinate, self.location.radius_meters):
            message = (
                f"You are not at the work location: {distance}m from {self.location.name}, "
                f"you must be within {self.location.radius_meters}m to clock in."
            )
            logger.warning(f"[CLOCK_FLOW] 📍 {self.employee.id} outside geofence ({distance}m > {self.location.radius_meters}m)")
            self.notifier.notify("error", message)
            self._finish(FlowResult(FlowOutcome.LOCATION_ABORT, message=message, distance_meters=distance))
            return

        # 2) Camera
        try:
            await self.camera.acquire()
        except CameraUnavailableError as e:
            logger.error(f"[CLOCK_FLOW] ❌ Camera unavailable: {e}")
            return self._fail(FlowError.CAMERA_UNAVAILABLE)
        self._camera_held = True
        if self.done:
            return

        self.notifier.hint("🔍 Verifying identity...")
        self._ticker = asyncio.create_task(self._tick())

    async def _tick(self) -> None:
        """Fixed-interval sampling timer; skips ticks while a sample is in flight."""
        while not self.done:
            if not self._busy and not self._recording:
                self._busy = True
                task = asyncio.create_task(self._sample_once())
                self._samples.add(task)
                task.add_done_callback(self._samples.discard)
            await asyncio.sleep(self.sample_interval)

    async def _sample_once(self) -> None:
        try:
            await self._sample()
        except CameraUnavailableError as e:
            logger.error(f"[CLOCK_FLOW] ❌ Frame capture failed: {e}")
            self._fail(FlowError.CAMERA_UNAVAILABLE)
        except Exception as e:
            if self._recording:
                # No further samples once recording started; end the flow
                logger.error(f"[CLOCK_FLOW] ❌ Recording failed: {e}")
                self._fail(RecordError.PERSISTENCE_ERROR)
            else:
                # Transient detector failure: keep sampling
                logger.error(f"[CLOCK_FLOW] ❌ Sample failed: {e}")
                self.notifier.hint("Error reading the camera. Trying again...")
        finally:
            self._busy = False
            if (
                self.max_samples is not None
                and self.samples_taken >= self.max_samples
                and not self._recording
            ):
                self._finish(
                    FlowResult(
                        FlowOutcome.EXHAUSTED,
                        error=FaceMatchError.NO_FACE_DETECTED,
                        message=describe(FaceMatchError.NO_FACE_DETECTED),
                    )
                )

    async def _sample(self) -> None:
        if self.done:
            return
        self.samples_taken += 1
        frame = await self.camera.capture_frame()
        # CPU bound; keep the scheduler free to cancel
        detection = await asyncio.to_thread(self.face.detect_face, frame)
        if self.done:
            return

        if detection is None:
            self.notifier.hint(describe(FaceMatchError.NO_FACE_DETECTED))
            return

        verdict = verify_against_reference(
            detection.embedding, self.employee.reference_embedding(), self.threshold
        )
        if verdict.error == FaceMatchError.NO_REFERENCE_EMBEDDING:
            return self._fail(verdict.error)
        if verdict.error == FaceMatchError.BELOW_THRESHOLD:
            message = describe(verdict.error)
            logger.warning(
                f"[CLOCK_FLOW] 🚨 Identity mismatch for {self.employee.id} (distance {verdict.distance:.3f})"
            )
            self.notifier.notify("error", message)
            self._finish(
                FlowResult(
                    FlowOutcome.SECURITY_ABORT,
                    error=verdict.error,
                    message=message,
                    face_distance=verdict.distance,
                )
            )
            return

        if self._recording:
            return
        self._recording = True
        self.notifier.hint("✅ Identity confirmed! Recording...")
        await self._record(frame, verdict.distance)

    async def _record(self, frame: bytes, face_distance: float) -> None:
        now = self.clock()
        try:
            todays = list(self.todays_records(now))
        except SQLAlchemyError as e:
            logger.error(f"[CLOCK_FLOW] ❌ Could not read today's records: {e}")
            return self._fail(RecordError.PERSISTENCE_ERROR)
        attendance_type = next_action(todays)

        outcome = await asyncio.to_thread(
            self.sequencer.record,
            self.employee,
            self.location,
            self.shift,
            attendance_type,
            self.position,
            encode_image(frame),
            now,
            todays,
        )

        if not outcome.ok:
            if self.done:
                return
            return self._fail(outcome.error, face_distance=face_distance)

        record = outcome.record
        message = f"Attendance recorded: {record.type}"
        if record.punctuality_message:
            message += f" ({record.punctuality_message})"
        finished = self._finish(
            FlowResult(
                FlowOutcome.SUCCESS,
                record=record,
                message=message,
                distance_meters=record.distance_meters,
                face_distance=face_distance,
            )
        )
        if finished:
            self.notifier.notify("success", message)
        else:
            logger.warning(
                f"[CLOCK_FLOW] ⚠️ Record {record.id} saved after the flow ended; result discarded"
            )
