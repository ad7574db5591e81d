from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import cv2
import numpy as np
import pytest

from postureai.utils.structures import Pose

GOOD_SITTING = {
    "nose": (230, 90, 0.9),
    "left_shoulder": (200, 100, 0.9),
    "right_shoulder": (260, 100, 0.9),
    "left_hip": (210, 400, 0.9),
    "right_hip": (250, 400, 0.9),
}


def make_pose(points: Optional[Dict[str, Tuple[float, float, float]]] = None, **overrides: Tuple[float, float, float]) -> Pose:
    data = dict(GOOD_SITTING if points is None else points)
    data.update(overrides)
    return Pose.from_mapping(data, image_size=(640, 480))


def solid_frame(value: int, size: Tuple[int, int] = (640, 480)) -> np.ndarray:
    width, height = size
    return np.full((height, width, 3), value, dtype=np.uint8)


class HandleRegistry:
    def __init__(self) -> None:
        self.open = 0
        self.max_open = 0
        self.created: List["FakeCapture"] = []

    def opened(self) -> None:
        self.open += 1
        self.max_open = max(self.max_open, self.open)

    def released(self) -> None:
        self.open -= 1


class FakeCapture:
    def __init__(
        self,
        registry: HandleRegistry,
        args: Tuple[Any, ...],
        opened: bool = True,
        frames: Optional[List[np.ndarray]] = None,
        loop_frames: bool = False,
        fps: float = 30.0,
    ) -> None:
        self.registry = registry
        self.args = args
        self._opened = opened
        self.frames = frames if frames is not None else [solid_frame(10)]
        self.loop_frames = loop_frames
        self.fps = fps
        self.position = 0
        self.released = False
        self.settings: Dict[int, float] = {}
        if opened:
            registry.opened()

    def isOpened(self) -> bool:
        return self._opened and not self.released

    def _advance(self) -> Optional[np.ndarray]:
        if self.position >= len(self.frames):
            if not self.loop_frames or not self.frames:
                return None
            self.position = 0
        frame = self.frames[self.position]
        self.position += 1
        return frame

    def read(self):
        frame = self._advance()
        if frame is None:
            return False, None
        return True, frame.copy()

    def grab(self) -> bool:
        return self._advance() is not None

    def set(self, prop: int, value: float) -> bool:
        self.settings[prop] = value
        if prop == cv2.CAP_PROP_POS_FRAMES:
            self.position = int(value)
        return True

    def get(self, prop: int) -> float:
        if prop == cv2.CAP_PROP_FPS:
            return self.fps
        return self.settings.get(prop, 0.0)

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        if self._opened:
            self.registry.released()


class FakeCaptureFactory:
    """Stands in for ``cv2.VideoCapture`` and tracks how many handles are open."""

    def __init__(self, **capture_kwargs: Any) -> None:
        self.registry = HandleRegistry()
        self.capture_kwargs = capture_kwargs
        self.error: Optional[BaseException] = None
        self.calls: List[Tuple[Any, ...]] = []

    def __call__(self, *args: Any) -> FakeCapture:
        self.calls.append(args)
        if self.error is not None:
            raise self.error
        capture = FakeCapture(self.registry, args, **self.capture_kwargs)
        self.registry.created.append(capture)
        return capture


class FakeEstimator:
    """Async estimator whose calls can be held open and released from the test."""

    def __init__(self, poses: Optional[List[Pose]] = None, delay: float = 0.0, hold: bool = False) -> None:
        self.poses = poses if poses is not None else [make_pose()]
        self.delay = delay
        self.hold = hold
        self.calls = 0
        self.completed = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.max_outstanding = 0
        self.failures: List[BaseException] = []
        self.frames: List[np.ndarray] = []
        self.release = asyncio.Event() if hold else None
        self.closed = False

    async def estimate(self, frame: np.ndarray) -> List[Pose]:
        self.calls += 1
        self.frames.append(frame)
        self.max_outstanding = max(self.max_outstanding, self.calls - self.completed)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.release is not None:
                await self.release.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.failures:
                raise self.failures.pop(0)
            return list(self.poses)
        finally:
            self.in_flight -= 1
            self.completed += 1

    def close(self) -> None:
        self.closed = True


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def capture_factory() -> FakeCaptureFactory:
    return FakeCaptureFactory(loop_frames=True)


@pytest.fixture
def video_file(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00")
    return path
