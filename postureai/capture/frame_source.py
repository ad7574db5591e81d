from __future__ import annotations

import errno
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import cv2
import numpy as np
from loguru import logger

from postureai.utils.camera import configure_capture
from postureai.utils.structures import AnalysisResult, FrameSourceStatus, InvalidTransitionError


class DeviceErrorKind(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    DEVICE_NOT_FOUND = "device_not_found"
    DEVICE_BUSY = "device_busy"
    CONSTRAINTS_UNSATISFIABLE = "constraints_unsatisfiable"
    SECURITY_BLOCKED = "security_blocked"
    UNKNOWN = "unknown"
    FILE_UNREADABLE = "file_unreadable"


DEVICE_ERROR_MESSAGES: Dict[DeviceErrorKind, str] = {
    DeviceErrorKind.PERMISSION_DENIED: "Camera access denied. Please allow camera permissions and refresh the page.",
    DeviceErrorKind.DEVICE_NOT_FOUND: "No camera found. Please connect a camera and try again.",
    DeviceErrorKind.DEVICE_BUSY: "Camera is already in use by another application.",
    DeviceErrorKind.CONSTRAINTS_UNSATISFIABLE: "Camera does not support the required settings.",
    DeviceErrorKind.SECURITY_BLOCKED: "Camera access blocked due to security restrictions.",
    DeviceErrorKind.UNKNOWN: "Camera error: {detail}",
    DeviceErrorKind.FILE_UNREADABLE: "Unable to open video file: {detail}",
}


@dataclass(frozen=True)
class DeviceErrorReason:
    kind: DeviceErrorKind
    detail: str = ""

    @property
    def message(self) -> str:
        return DEVICE_ERROR_MESSAGES[self.kind].format(detail=self.detail)


class DeviceAccessError(RuntimeError):
    def __init__(self, reason: DeviceErrorReason) -> None:
        super().__init__(reason.message)
        self.reason = reason


def classify_device_error(exc: BaseException) -> DeviceErrorReason:
    """Map an exception raised while opening a capture device to a reason."""
    if isinstance(exc, DeviceAccessError):
        return exc.reason
    if isinstance(exc, OSError):
        if isinstance(exc, PermissionError) or exc.errno in (errno.EACCES, errno.EPERM):
            return DeviceErrorReason(DeviceErrorKind.PERMISSION_DENIED)
        if exc.errno == errno.EBUSY:
            return DeviceErrorReason(DeviceErrorKind.DEVICE_BUSY)
        if isinstance(exc, FileNotFoundError) or exc.errno in (errno.ENOENT, errno.ENODEV, errno.ENXIO):
            return DeviceErrorReason(DeviceErrorKind.DEVICE_NOT_FOUND)
    return DeviceErrorReason(DeviceErrorKind.UNKNOWN, str(exc) or exc.__class__.__name__)


@dataclass(frozen=True)
class CameraOrigin:
    index: int = 0
    width: int = 640
    height: int = 480
    exact: bool = False
    backend: int = cv2.CAP_ANY


@dataclass(frozen=True)
class FileOrigin:
    path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path))


Origin = Union[CameraOrigin, FileOrigin]


@dataclass(frozen=True)
class FrameSourceState:
    status: FrameSourceStatus
    reason: Optional[DeviceErrorReason] = None


class FrameSource:
    """Owns one capture handle (camera or video file) and serves frames on demand.

    Files are paced against a playback clock, so a caller sampling every 100 ms
    sees the frame that would be on screen at that moment, not the next one in
    the container.
    """

    def __init__(
        self,
        capture_factory: Callable[..., Any] = cv2.VideoCapture,
        camera_enabled: bool = True,
        flip: bool = False,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Optional[Callable[[FrameSourceState], None]] = None,
    ) -> None:
        self._capture_factory = capture_factory
        self.camera_enabled = camera_enabled
        self.flip = flip
        self._clock = clock
        self._on_state_change = on_state_change
        self._state = FrameSourceState(FrameSourceStatus.STOPPED)
        self._capture: Optional[Any] = None
        self._origin: Optional[Origin] = None
        self._latest: Optional[np.ndarray] = None
        self._fps = 30.0
        self._next_index = 0
        self._played = 0.0
        self._resumed_at: Optional[float] = None
        self.ended = False
        self.last_analysis: Optional[AnalysisResult] = None
        self.last_annotated: Optional[np.ndarray] = None

    @property
    def state(self) -> FrameSourceState:
        return self._state

    @property
    def status(self) -> FrameSourceStatus:
        return self._state.status

    @property
    def origin(self) -> Optional[Origin]:
        return self._origin

    @property
    def is_open(self) -> bool:
        return self._capture is not None

    def start(self, origin: Origin) -> None:
        if self.status not in (FrameSourceStatus.STOPPED, FrameSourceStatus.ERROR):
            raise InvalidTransitionError(f"cannot start frame source while {self.status.value}")
        self._origin = origin
        self.ended = False
        self._set_state(FrameSourceState(FrameSourceStatus.REQUESTING))
        try:
            if isinstance(origin, CameraOrigin):
                self._capture = self._open_camera(origin)
            else:
                self._capture = self._open_file(origin)
        except Exception as exc:
            reason = classify_device_error(exc)
            logger.error("Frame source failed to start ({}): {}", reason.kind.value, reason.message)
            self._set_state(FrameSourceState(FrameSourceStatus.ERROR, reason))
            if isinstance(exc, DeviceAccessError):
                raise
            raise DeviceAccessError(reason) from exc
        self._played = 0.0
        self._resumed_at = self._clock()
        self._set_state(FrameSourceState(FrameSourceStatus.ACTIVE))
        logger.info("Frame source active: {}", origin)

    def pause(self) -> None:
        if self.status == FrameSourceStatus.PAUSED:
            return
        if self.status != FrameSourceStatus.ACTIVE:
            raise InvalidTransitionError(f"cannot pause frame source while {self.status.value}")
        self._played = self._elapsed()
        self._resumed_at = None
        self._set_state(FrameSourceState(FrameSourceStatus.PAUSED))

    def resume(self) -> None:
        if self.status == FrameSourceStatus.ACTIVE:
            return
        if self.status != FrameSourceStatus.PAUSED:
            raise InvalidTransitionError(f"cannot resume frame source while {self.status.value}")
        if self.ended:
            self._rewind()
        self._resumed_at = self._clock()
        self._set_state(FrameSourceState(FrameSourceStatus.ACTIVE))

    def reset(self) -> None:
        self.last_analysis = None
        self.last_annotated = None

    def remember(self, result: AnalysisResult, annotated: Optional[np.ndarray] = None) -> None:
        self.last_analysis = result
        self.last_annotated = annotated

    def teardown(self) -> None:
        capture = self._capture
        self._capture = None
        if capture is not None:
            capture.release()
            logger.info("Frame source released: {}", self._origin)
        self._latest = None
        self._resumed_at = None
        self.reset()
        if self.status != FrameSourceStatus.STOPPED:
            self._set_state(FrameSourceState(FrameSourceStatus.STOPPED))

    def current_frame(self) -> Optional[np.ndarray]:
        """Next frame to analyse, or None unless the source is active."""
        if self.status != FrameSourceStatus.ACTIVE or self._capture is None:
            return None
        if isinstance(self._origin, FileOrigin):
            return self._read_file_frame()
        ok, frame = self._capture.read()
        if ok and frame is not None:
            self._latest = cv2.flip(frame, 1) if self.flip else frame
        return self._latest

    def last_frame(self) -> Optional[np.ndarray]:
        """The last frame served, kept while paused or after a file ends."""
        return self._latest

    def _open_camera(self, origin: CameraOrigin) -> Any:
        if not self.camera_enabled:
            raise DeviceAccessError(DeviceErrorReason(DeviceErrorKind.SECURITY_BLOCKED))
        cap = self._capture_factory(origin.index, origin.backend)
        if not cap.isOpened():
            cap.release()
            raise DeviceAccessError(DeviceErrorReason(DeviceErrorKind.DEVICE_NOT_FOUND))
        configure_capture(cap, origin.width, origin.height)
        ok, frame = cap.read()
        if not ok or frame is None:
            cap.release()
            raise DeviceAccessError(DeviceErrorReason(DeviceErrorKind.DEVICE_BUSY))
        height, width = frame.shape[:2]
        if origin.exact and (width, height) != (origin.width, origin.height):
            cap.release()
            logger.warning("Camera delivered {}x{}, requested {}x{}", width, height, origin.width, origin.height)
            raise DeviceAccessError(DeviceErrorReason(DeviceErrorKind.CONSTRAINTS_UNSATISFIABLE))
        self._latest = cv2.flip(frame, 1) if self.flip else frame
        return cap

    def _open_file(self, origin: FileOrigin) -> Any:
        if not origin.path.is_file():
            raise DeviceAccessError(DeviceErrorReason(DeviceErrorKind.FILE_UNREADABLE, f"{origin.path} does not exist"))
        cap = self._capture_factory(str(origin.path))
        if not cap.isOpened():
            cap.release()
            raise DeviceAccessError(DeviceErrorReason(DeviceErrorKind.FILE_UNREADABLE, str(origin.path)))
        fps = float(cap.get(cv2.CAP_PROP_FPS) or 0.0)
        self._fps = fps if fps > 0 else 30.0
        self._next_index = 0
        self._latest = None
        return cap

    def _elapsed(self) -> float:
        if self._resumed_at is None:
            return self._played
        return self._played + (self._clock() - self._resumed_at)

    def _read_file_frame(self) -> Optional[np.ndarray]:
        assert self._capture is not None
        target = int(self._elapsed() * self._fps)
        if target < self._next_index:
            return self._latest
        while self._next_index < target:
            if not self._capture.grab():
                return self._end_of_file()
            self._next_index += 1
        ok, frame = self._capture.read()
        if not ok or frame is None:
            return self._end_of_file()
        self._next_index += 1
        self._latest = cv2.flip(frame, 1) if self.flip else frame
        return self._latest

    def _end_of_file(self) -> None:
        logger.info("Reached end of video after {} frames", self._next_index)
        self.ended = True
        self.pause()
        return None

    def _rewind(self) -> None:
        assert self._capture is not None
        self._capture.set(cv2.CAP_PROP_POS_FRAMES, 0)
        self._next_index = 0
        self._played = 0.0
        self.ended = False

    def _set_state(self, state: FrameSourceState) -> None:
        previous = self._state
        self._state = state
        logger.debug("Frame source {} -> {}", previous.status.value, state.status.value)
        if self._on_state_change is not None:
            self._on_state_change(state)
