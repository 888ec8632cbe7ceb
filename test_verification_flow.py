import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from conftest import (
    CENTER,
    TZ,
    FakeCamera,
    FakeFace,
    FakeGeolocation,
    RecordingNotifier,
    local_time,
    offset_north,
    probe_at,
)
from core.errors import FaceMatchError, FlowError, PositionError, RecordError
from services.attendance_sequencer import AttendanceSequencer
from services.attendance_store import AttendanceStore
from services.verification_flow import ClockInFlow, FlowOutcome

ANA = b"ana-frame"
STRANGER = b"stranger-frame"
BLANK = b"blank-frame"


def make_flow(store, employee, location, shift, *, meters=50, frames=(ANA,), face=None, **kwargs):
    camera = kwargs.pop("camera", None) or FakeCamera(list(frames))
    geolocation = kwargs.pop("geolocation", None) or FakeGeolocation(offset_north(CENTER, meters))
    face = face or FakeFace({ANA: probe_at(0.3), STRANGER: probe_at(0.8)})
    notifier = RecordingNotifier()
    flow = ClockInFlow(
        employee=employee,
        location=location,
        shift=shift,
        sequencer=AttendanceSequencer(store, TZ),
        geolocation=geolocation,
        camera=camera,
        face=face,
        notifier=notifier,
        clock=kwargs.pop("clock", lambda: local_time(9)),
        sample_interval=kwargs.pop("sample_interval", 0.01),
        position_timeout=kwargs.pop("position_timeout", 1),
        **kwargs,
    )
    return flow, camera, geolocation, face, notifier


def test_match_inside_geofence_records_one_entry(store, employee, location, day_shift):
    flow, camera, _, _, notifier = make_flow(store, employee, location, day_shift)

    result = asyncio.run(flow.run())

    assert result.outcome == FlowOutcome.SUCCESS
    record = result.record
    assert record.type == "ENTRY"
    assert record.verified is True
    assert record.distance_meters == 50
    assert (record.score, record.punctuality_status) == (100, "PERFECT")
    assert record.photo_snapshot.startswith("data:image/jpeg;base64,")
    assert abs(result.face_distance - 0.3) < 1e-9
    assert len(store.latest_for_employee(employee.id)) == 1
    assert camera.acquired == 1 and camera.released == 1
    assert notifier.notifications[-1][0] == "success"


def test_outside_geofence_aborts_before_camera(store, employee, location, day_shift):
    flow, camera, _, face, notifier = make_flow(store, employee, location, day_shift, meters=200)

    result = asyncio.run(flow.run())

    assert result.outcome == FlowOutcome.LOCATION_ABORT
    assert result.distance_meters == 200
    assert "200m" in result.message and "100m" in result.message
    assert camera.acquired == 0
    assert face.calls == 0
    assert store.latest_for_employee(employee.id) == []


def test_identity_mismatch_is_a_security_abort(store, employee, location, day_shift):
    flow, camera, _, _, notifier = make_flow(
        store, employee, location, day_shift, frames=(STRANGER, ANA)
    )

    result = asyncio.run(flow.run())

    assert result.outcome == FlowOutcome.SECURITY_ABORT
    assert result.error == FaceMatchError.BELOW_THRESHOLD
    assert abs(result.face_distance - 0.8) < 1e-9
    assert store.latest_for_employee(employee.id) == []
    assert camera.captured == 1  # no retry after a mismatch
    assert camera.released == 1
    assert notifier.notifications == [("error", result.message)]


def test_no_face_keeps_sampling_until_a_match(store, employee, location, day_shift):
    flow, camera, _, face, notifier = make_flow(
        store, employee, location, day_shift, frames=(BLANK, BLANK, ANA)
    )

    result = asyncio.run(flow.run())

    assert result.outcome == FlowOutcome.SUCCESS
    assert face.calls == 3
    assert flow.samples_taken == 3
    assert notifier.hints.count("No face detected. Adjust your position.") == 2


def test_only_one_sample_in_flight_and_one_record(store, employee, location, day_shift):
    face = FakeFace({ANA: probe_at(0.3)}, delay=0.05)
    flow, _, _, face, _ = make_flow(
        store, employee, location, day_shift, face=face, sample_interval=0.001
    )

    result = asyncio.run(flow.run())

    assert result.outcome == FlowOutcome.SUCCESS
    assert face.max_concurrent == 1
    assert len(store.latest_for_employee(employee.id)) == 1


def test_next_flow_records_the_next_action(store, employee, location, day_shift):
    first, *_ = make_flow(store, employee, location, day_shift)
    second, *_ = make_flow(store, employee, location, day_shift, clock=lambda: local_time(11, 55))

    assert asyncio.run(first.run()).record.type == "ENTRY"
    result = asyncio.run(second.run())

    assert result.record.type == "BREAK_START"
    assert (result.record.score, result.record.punctuality_status) == (80, "GOOD")


def test_cancel_releases_camera_without_recording(store, employee, location, day_shift):
    flow, camera, *_ = make_flow(store, employee, location, day_shift, frames=(BLANK,))

    async def scenario():
        task = asyncio.create_task(flow.run())
        while flow.samples_taken < 2:
            await asyncio.sleep(0.005)
        flow.cancel()
        return await task

    result = asyncio.run(scenario())

    assert result.outcome == FlowOutcome.CANCELLED
    assert camera.acquired == 1 and camera.released == 1
    assert store.latest_for_employee(employee.id) == []


def test_cancel_while_waiting_for_position(store, employee, location, day_shift):
    geolocation = FakeGeolocation(offset_north(CENTER, 10), delay=5)
    flow, camera, *_ = make_flow(
        store, employee, location, day_shift, geolocation=geolocation, position_timeout=10
    )

    async def scenario():
        task = asyncio.create_task(flow.run())
        await asyncio.sleep(0.02)
        flow.cancel()
        return await task

    result = asyncio.run(scenario())

    assert result.outcome == FlowOutcome.CANCELLED
    assert camera.acquired == 0


def test_position_timeout(store, employee, location, day_shift):
    geolocation = FakeGeolocation(CENTER, delay=1)
    flow, camera, *_ = make_flow(
        store, employee, location, day_shift, geolocation=geolocation, position_timeout=0.05
    )

    result = asyncio.run(flow.run())

    assert result.outcome == FlowOutcome.FAILED
    assert result.error == PositionError.TIMEOUT
    assert camera.acquired == 0


def test_position_permission_denied(store, employee, location, day_shift):
    geolocation = FakeGeolocation(error=PositionError.PERMISSION_DENIED)
    flow, *_ = make_flow(store, employee, location, day_shift, geolocation=geolocation)

    result = asyncio.run(flow.run())

    assert (result.outcome, result.error) == (FlowOutcome.FAILED, PositionError.PERMISSION_DENIED)


def test_missing_shift_fails_before_any_device(store, employee, location):
    flow, camera, geolocation, *_ = make_flow(store, employee, location, None)

    result = asyncio.run(flow.run())

    assert (result.outcome, result.error) == (FlowOutcome.FAILED, RecordError.MISSING_SHIFT)
    assert geolocation.calls == 0 and camera.acquired == 0


def test_missing_location_fails(store, employee, day_shift):
    flow, *_ = make_flow(store, employee, None, day_shift)

    result = asyncio.run(flow.run())

    assert result.error == RecordError.MISSING_LOCATION


def test_camera_unavailable(store, employee, location, day_shift):
    flow, camera, *_ = make_flow(
        store, employee, location, day_shift, camera=FakeCamera([ANA], fail_acquire=True)
    )

    result = asyncio.run(flow.run())

    assert (result.outcome, result.error) == (FlowOutcome.FAILED, FlowError.CAMERA_UNAVAILABLE)
    assert camera.released == 0


def test_employee_without_reference_embedding(store, employee, location, day_shift):
    employee.face_embedding = None
    flow, camera, *_ = make_flow(store, employee, location, day_shift)

    result = asyncio.run(flow.run())

    assert (result.outcome, result.error) == (FlowOutcome.FAILED, FaceMatchError.NO_REFERENCE_EMBEDDING)
    assert camera.released == 1
    assert store.latest_for_employee(employee.id) == []


def test_sample_budget_exhausted(store, employee, location, day_shift):
    flow, camera, *_ = make_flow(
        store, employee, location, day_shift, frames=(BLANK,), max_samples=2
    )

    result = asyncio.run(flow.run())

    assert result.outcome == FlowOutcome.EXHAUSTED
    assert result.error == FaceMatchError.NO_FACE_DETECTED
    assert camera.captured == 2
    assert camera.released == 1


def test_flow_runs_only_once(store, employee, location, day_shift):
    flow, *_ = make_flow(store, employee, location, day_shift)
    asyncio.run(flow.run())

    with pytest.raises(RuntimeError, match="only run once"):
        asyncio.run(flow.run())


def _database_down(now):
    raise OperationalError("SELECT FROM attendance", {}, Exception("database is locked"))


class BrokenStore(AttendanceStore):
    def add(self, record):
        raise OperationalError("INSERT INTO attendance", {}, Exception("database is locked"))


def test_unreadable_records_end_the_flow(store, employee, location, day_shift):
    flow, camera, _, _, notifier = make_flow(
        store, employee, location, day_shift, todays_records=_database_down, max_samples=1
    )

    result = asyncio.run(asyncio.wait_for(flow.run(), 2))

    assert result.outcome == FlowOutcome.FAILED
    assert result.error == RecordError.PERSISTENCE_ERROR
    assert camera.released == camera.acquired == 1
    assert notifier.notifications[-1][0] == "error"


def test_failed_write_ends_the_flow(engine, employee, location, day_shift):
    broken = BrokenStore(engine, TZ)
    flow, camera, _, _, _ = make_flow(broken, employee, location, day_shift)

    result = asyncio.run(asyncio.wait_for(flow.run(), 2))

    assert result.outcome == FlowOutcome.FAILED
    assert result.error == RecordError.PERSISTENCE_ERROR
    assert not camera.active
    assert broken.latest_for_employee(employee.id) == []


def test_unexpected_error_while_recording_ends_the_flow(store, employee, location, day_shift):
    def broken_snapshot(now):
        raise RuntimeError("snapshot view closed")

    flow, camera, _, _, _ = make_flow(
        store, employee, location, day_shift, todays_records=broken_snapshot
    )

    result = asyncio.run(asyncio.wait_for(flow.run(), 2))

    assert result.outcome == FlowOutcome.FAILED
    assert result.error == RecordError.PERSISTENCE_ERROR
    assert not camera.active
