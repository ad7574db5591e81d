from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import cv2
import numpy as np
from loguru import logger

from postureai.capture.frame_source import (
    CameraOrigin,
    DeviceAccessError,
    DeviceErrorReason,
    FileOrigin,
    FrameSource,
    FrameSourceState,
    Origin,
)
from postureai.logic.history import AnalysisHistory
from postureai.logic.rules import PostureClassifier
from postureai.pipeline.analysis_loop import DEFAULT_PERIOD, AnalysisLoop, Consumer
from postureai.pose.base import InitializationFailure, PoseEstimator
from postureai.utils.structures import AnalysisEvent, FrameSourceStatus, LoopState


class SessionNotRunningError(RuntimeError):
    pass


class PostureSession:
    """Owns the live frame source, the analysis loop, and the result history.

    Only one frame source exists at a time. Switching between webcam and upload
    tears the old one down, releasing its capture handle, before the new one is
    opened.
    """

    def __init__(
        self,
        estimator_factory: Callable[[], PoseEstimator],
        classifier: Optional[PostureClassifier] = None,
        capture_factory: Callable[..., Any] = cv2.VideoCapture,
        period: float = DEFAULT_PERIOD,
        camera_enabled: bool = True,
        flip: bool = False,
    ) -> None:
        self._estimator_factory = estimator_factory
        self._classifier = classifier or PostureClassifier()
        self._capture_factory = capture_factory
        self.period = period
        self.camera_enabled = camera_enabled
        self.flip = flip
        self._lock = asyncio.Lock()
        self._estimator: Optional[PoseEstimator] = None
        self._loop: Optional[AnalysisLoop] = None
        self._extra_consumers: list[Consumer] = []
        self.frame_source: Optional[FrameSource] = None
        self.history = AnalysisHistory()
        self.current: Optional[AnalysisEvent] = None
        self.init_error: Optional[str] = None
        self.device_error: Optional[DeviceErrorReason] = None
        self._last_origin: Optional[Origin] = None

    @property
    def loop_state(self) -> LoopState:
        return self._loop.state if self._loop is not None else LoopState.STOPPED

    @property
    def source_status(self) -> FrameSourceStatus:
        return self.frame_source.status if self.frame_source is not None else FrameSourceStatus.STOPPED

    @property
    def analysis_loop(self) -> Optional[AnalysisLoop]:
        return self._loop

    def initialize(self) -> None:
        """Load the pose model. A failure here is permanent for this session."""
        if self.init_error is not None:
            raise InitializationFailure(self.init_error)
        if self._estimator is not None:
            return
        try:
            self._estimator = self._estimator_factory()
        except InitializationFailure as exc:
            self.init_error = str(exc)
            logger.error("Pose model failed to load: {}", exc)
            raise
        except Exception as exc:
            self.init_error = f"Failed to initialize pose detector: {exc}"
            logger.exception("Pose model failed to load")
            raise InitializationFailure(self.init_error) from exc
        self._loop = AnalysisLoop(self.latest_frame, self._estimator, self._classifier, self.period)
        self._loop.add_consumer(self._on_analysis)
        self._loop.add_consumer(self.history)
        for consumer in self._extra_consumers:
            self._loop.add_consumer(consumer)
        logger.info("Pose model ready")

    def add_consumer(self, consumer: Consumer) -> None:
        self._extra_consumers.append(consumer)
        if self._loop is not None:
            self._loop.add_consumer(consumer)

    async def start(self, origin: Origin) -> None:
        async with self._lock:
            self.initialize()
            self._release_source()
            self._last_origin = origin
            self.device_error = None
            source = FrameSource(
                capture_factory=self._capture_factory,
                camera_enabled=self.camera_enabled,
                flip=self.flip and isinstance(origin, CameraOrigin),
                on_state_change=self._on_source_state,
            )
            self.frame_source = source
            try:
                source.start(origin)
            except DeviceAccessError as exc:
                self.device_error = exc.reason
                raise
            assert self._loop is not None
            self._loop.start()

    async def start_camera(self, index: int = 0, width: int = 640, height: int = 480, exact: bool = False) -> None:
        await self.start(CameraOrigin(index=index, width=width, height=height, exact=exact))

    async def start_file(self, path: Path | str) -> None:
        await self.start(FileOrigin(Path(path)))

    async def switch_origin(self, origin: Origin) -> None:
        logger.info("Switching video origin to {}", origin)
        await self.start(origin)

    async def retry(self) -> None:
        if self._last_origin is None:
            raise SessionNotRunningError("Nothing to retry; no origin has been started")
        await self.start(self._last_origin)

    def pause(self) -> None:
        source = self._require_source()
        if self._loop is not None and self._loop.is_active:
            self._loop.stop()
        source.pause()

    def resume(self) -> None:
        source = self._require_source()
        source.resume()
        if self._loop is not None and not self._loop.is_active:
            self._loop.start()

    def toggle_pause(self) -> None:
        if self.source_status == FrameSourceStatus.PAUSED:
            self.resume()
        else:
            self.pause()

    def reset(self) -> None:
        self.current = None
        if self.frame_source is not None:
            self.frame_source.reset()

    async def shutdown(self) -> None:
        async with self._lock:
            self._release_source()
            if self._loop is not None:
                await self._loop.drain()
            if self._estimator is not None:
                self._estimator.close()
                self._estimator = None
            logger.info("Session shut down after {} analyses", self.history.total)

    def latest_frame(self) -> Optional[np.ndarray]:
        if self.frame_source is None:
            return None
        return self.frame_source.current_frame()

    def display_frame(self) -> Optional[np.ndarray]:
        """Frame for the window: live while active, the still image otherwise."""
        if self.frame_source is None:
            return None
        frame = self.frame_source.current_frame()
        if frame is None:
            frame = self.frame_source.last_frame()
        return frame

    def status(self) -> Dict[str, object]:
        status: Dict[str, object] = {
            "source": self.source_status.value,
            "loop": self.loop_state.value,
            "origin": str(self._last_origin) if self._last_origin is not None else None,
            "analyses": self.history.total,
            "successRate": round(self.history.success_rate, 1),
        }
        if self.current is not None:
            status["current"] = self.current.result.to_dict()
        if self.device_error is not None:
            status["deviceError"] = self.device_error.message
        if self.init_error is not None:
            status["initError"] = self.init_error
        if self._loop is not None:
            status["analysisRate"] = round(self._loop.rate.get_fps(), 1)
        return status

    def _on_analysis(self, event: AnalysisEvent) -> None:
        self.current = event
        if self.frame_source is not None:
            self.frame_source.remember(event.result)

    def _on_source_state(self, state: FrameSourceState) -> None:
        # a file that runs out pauses itself; analysis stops with it
        if state.status == FrameSourceStatus.PAUSED and self._loop is not None and self._loop.is_active:
            self._loop.stop()

    def _require_source(self) -> FrameSource:
        if self.frame_source is None or self.frame_source.status in (FrameSourceStatus.STOPPED, FrameSourceStatus.ERROR):
            raise SessionNotRunningError("No active video source")
        return self.frame_source

    def _release_source(self) -> None:
        if self._loop is not None and self._loop.is_active:
            self._loop.stop()
        if self.frame_source is not None:
            self.frame_source.teardown()
            self.frame_source = None
        self.current = None
