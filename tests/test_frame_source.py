from __future__ import annotations

import errno

import cv2
import pytest

from conftest import FakeCaptureFactory, make_pose, solid_frame
from postureai.capture.frame_source import (
    CameraOrigin,
    DeviceAccessError,
    DeviceErrorKind,
    FileOrigin,
    FrameSource,
)
from postureai.logic.rules import PostureClassifier
from postureai.utils.structures import FrameSourceStatus, InvalidTransitionError


class ManualClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_camera_start_goes_through_requesting(capture_factory):
    seen = []
    source = FrameSource(capture_factory=capture_factory, on_state_change=lambda state: seen.append(state.status))
    source.start(CameraOrigin(index=2))
    assert seen == [FrameSourceStatus.REQUESTING, FrameSourceStatus.ACTIVE]
    assert capture_factory.calls == [(2, cv2.CAP_ANY)]
    capture = capture_factory.registry.created[0]
    assert capture.settings[cv2.CAP_PROP_FRAME_WIDTH] == 640
    assert capture.settings[cv2.CAP_PROP_FRAME_HEIGHT] == 480
    assert source.current_frame() is not None
    assert capture_factory.registry.open == 1


def test_camera_that_does_not_open_is_not_found():
    factory = FakeCaptureFactory(opened=False)
    source = FrameSource(capture_factory=factory)
    with pytest.raises(DeviceAccessError) as excinfo:
        source.start(CameraOrigin())
    assert excinfo.value.reason.kind == DeviceErrorKind.DEVICE_NOT_FOUND
    assert str(excinfo.value) == "No camera found. Please connect a camera and try again."
    assert source.status == FrameSourceStatus.ERROR
    assert source.state.reason.kind == DeviceErrorKind.DEVICE_NOT_FOUND
    assert factory.registry.created[0].released
    assert not source.is_open


def test_camera_that_opens_but_yields_nothing_is_busy():
    factory = FakeCaptureFactory(frames=[])
    source = FrameSource(capture_factory=factory)
    with pytest.raises(DeviceAccessError) as excinfo:
        source.start(CameraOrigin())
    assert excinfo.value.reason.kind == DeviceErrorKind.DEVICE_BUSY
    assert factory.registry.open == 0


def test_exact_size_mismatch_is_unsatisfiable():
    factory = FakeCaptureFactory(frames=[solid_frame(10, (1280, 720))], loop_frames=True)
    source = FrameSource(capture_factory=factory)
    with pytest.raises(DeviceAccessError) as excinfo:
        source.start(CameraOrigin(exact=True))
    assert excinfo.value.reason.kind == DeviceErrorKind.CONSTRAINTS_UNSATISFIABLE
    assert factory.registry.open == 0

    # without exact the camera's own size is accepted
    source.start(CameraOrigin())
    assert source.status == FrameSourceStatus.ACTIVE
    assert source.current_frame().shape == (720, 1280, 3)


def test_disabled_camera_is_security_blocked(capture_factory):
    source = FrameSource(capture_factory=capture_factory, camera_enabled=False)
    with pytest.raises(DeviceAccessError) as excinfo:
        source.start(CameraOrigin())
    assert excinfo.value.reason.kind == DeviceErrorKind.SECURITY_BLOCKED
    assert capture_factory.calls == []


@pytest.mark.parametrize(
    "error, kind, message",
    [
        (
            PermissionError(errno.EACCES, "denied"),
            DeviceErrorKind.PERMISSION_DENIED,
            "Camera access denied. Please allow camera permissions and refresh the page.",
        ),
        (OSError(errno.EBUSY, "busy"), DeviceErrorKind.DEVICE_BUSY, "Camera is already in use by another application."),
        (OSError(errno.ENODEV, "gone"), DeviceErrorKind.DEVICE_NOT_FOUND, "No camera found. Please connect a camera and try again."),
        (RuntimeError("boom"), DeviceErrorKind.UNKNOWN, "Camera error: boom"),
    ],
)
def test_open_errors_map_to_reasons(capture_factory, error, kind, message):
    capture_factory.error = error
    source = FrameSource(capture_factory=capture_factory)
    with pytest.raises(DeviceAccessError) as excinfo:
        source.start(CameraOrigin())
    assert excinfo.value.reason.kind == kind
    assert excinfo.value.reason.message == message
    assert excinfo.value.__cause__ is error


def test_start_can_be_retried_after_error(capture_factory):
    capture_factory.error = PermissionError("denied")
    source = FrameSource(capture_factory=capture_factory)
    with pytest.raises(DeviceAccessError):
        source.start(CameraOrigin())
    capture_factory.error = None
    source.start(CameraOrigin())
    assert source.status == FrameSourceStatus.ACTIVE
    assert source.state.reason is None


def test_start_while_active_is_rejected(capture_factory):
    source = FrameSource(capture_factory=capture_factory)
    source.start(CameraOrigin())
    with pytest.raises(InvalidTransitionError):
        source.start(CameraOrigin())
    assert capture_factory.registry.open == 1


def test_teardown_is_idempotent(capture_factory):
    seen = []
    source = FrameSource(capture_factory=capture_factory, on_state_change=lambda state: seen.append(state.status))
    source.start(CameraOrigin())
    source.teardown()
    source.teardown()
    assert seen.count(FrameSourceStatus.STOPPED) == 1
    assert capture_factory.registry.open == 0
    assert source.current_frame() is None


def test_operations_before_start(capture_factory):
    source = FrameSource(capture_factory=capture_factory)
    assert source.current_frame() is None
    with pytest.raises(InvalidTransitionError):
        source.pause()
    with pytest.raises(InvalidTransitionError):
        source.resume()
    source.teardown()
    assert source.status == FrameSourceStatus.STOPPED


def test_pause_stops_frames_but_keeps_the_still_image(capture_factory):
    source = FrameSource(capture_factory=capture_factory)
    source.start(CameraOrigin())
    frame = source.current_frame()
    source.pause()
    source.pause()
    assert source.status == FrameSourceStatus.PAUSED
    assert source.current_frame() is None
    assert source.last_frame() is frame
    source.resume()
    source.resume()
    assert source.status == FrameSourceStatus.ACTIVE


def test_reset_clears_cached_analysis_but_keeps_the_handle(capture_factory):
    source = FrameSource(capture_factory=capture_factory)
    source.start(CameraOrigin())
    source.remember(PostureClassifier().classify([make_pose()]), solid_frame(5))
    source.reset()
    assert source.last_analysis is None
    assert source.last_annotated is None
    assert source.is_open
    assert source.status == FrameSourceStatus.ACTIVE
    assert capture_factory.registry.created[0].released is False


def test_mirrored_camera_frames(capture_factory):
    frame = solid_frame(0)
    frame[:, :10] = 255
    factory = FakeCaptureFactory(frames=[frame], loop_frames=True)
    source = FrameSource(capture_factory=factory, flip=True)
    source.start(CameraOrigin())
    mirrored = source.current_frame()
    assert mirrored[0, -1, 0] == 255
    assert mirrored[0, 0, 0] == 0


def test_missing_file_is_unreadable(capture_factory, tmp_path):
    source = FrameSource(capture_factory=capture_factory)
    with pytest.raises(DeviceAccessError) as excinfo:
        source.start(FileOrigin(tmp_path / "missing.mp4"))
    assert excinfo.value.reason.kind == DeviceErrorKind.FILE_UNREADABLE
    assert "missing.mp4" in excinfo.value.reason.message
    assert capture_factory.calls == []


def test_file_that_cannot_be_decoded_is_unreadable(video_file):
    factory = FakeCaptureFactory(opened=False)
    source = FrameSource(capture_factory=factory)
    with pytest.raises(DeviceAccessError) as excinfo:
        source.start(FileOrigin(video_file))
    assert excinfo.value.reason.kind == DeviceErrorKind.FILE_UNREADABLE
    assert factory.calls == [(str(video_file),)]


def test_file_playback_follows_the_clock(video_file):
    factory = FakeCaptureFactory(frames=[solid_frame(i) for i in range(10)], fps=30.0)
    clock = ManualClock()
    source = FrameSource(capture_factory=factory, clock=clock)
    source.start(FileOrigin(video_file))

    assert source.current_frame()[0, 0, 0] == 0
    clock.now = 0.1
    assert source.current_frame()[0, 0, 0] == 3
    # sampling again before the next frame is due returns the same picture
    assert source.current_frame()[0, 0, 0] == 3

    source.pause()
    clock.now = 5.0
    assert source.current_frame() is None
    assert source.last_frame()[0, 0, 0] == 3
    source.resume()
    clock.now = 5.2
    # 0.1 s before the pause plus 0.2 s after it
    assert source.current_frame()[0, 0, 0] == 9


def test_file_end_pauses_and_resume_rewinds(video_file):
    factory = FakeCaptureFactory(frames=[solid_frame(i) for i in range(10)], fps=30.0)
    clock = ManualClock()
    source = FrameSource(capture_factory=factory, clock=clock)
    source.start(FileOrigin(video_file))
    source.current_frame()

    clock.now = 1.0
    assert source.current_frame() is None
    assert source.ended
    assert source.status == FrameSourceStatus.PAUSED
    # still nothing to analyse, but the last picture stays available
    clock.now = 2.0
    assert source.current_frame() is None
    assert source.last_frame()[0, 0, 0] == 0

    source.resume()
    assert not source.ended
    assert source.current_frame()[0, 0, 0] == 0
    assert factory.registry.created[0].settings[cv2.CAP_PROP_POS_FRAMES] == 0


def test_file_without_fps_plays_at_thirty(video_file):
    factory = FakeCaptureFactory(frames=[solid_frame(i) for i in range(40)], fps=0.0)
    clock = ManualClock()
    source = FrameSource(capture_factory=factory, clock=clock)
    source.start(FileOrigin(video_file))
    clock.now = 1.0
    assert source.current_frame()[0, 0, 0] == 30
