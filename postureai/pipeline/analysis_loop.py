from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, List, Optional, Set

import numpy as np
from loguru import logger

from postureai.logic.rules import PostureClassifier
from postureai.pose.base import EstimationFailure, PoseEstimator
from postureai.utils.profiler import FPSMeter
from postureai.utils.structures import AnalysisEvent, InvalidTransitionError, LoopState

DEFAULT_PERIOD = 0.1

Consumer = Callable[[AnalysisEvent], None]
FrameProvider = Callable[[], Optional[np.ndarray]]


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


@dataclass
class LoopStats:
    ticks: int = 0
    skipped_busy: int = 0
    skipped_no_frame: int = 0
    frame_errors: int = 0
    estimations_started: int = 0
    estimations_completed: int = 0
    estimation_failures: int = 0
    discarded: int = 0
    emitted: int = 0


class AnalysisLoop:
    """Samples frames on a fixed period and runs them through estimator and classifier.

    At most one estimation is ever outstanding: a tick that arrives while one is
    in flight is dropped, not queued. Each estimation carries its own
    cancellation token; ``stop()`` cancels it so the late result is thrown away.
    """

    def __init__(
        self,
        frame_provider: FrameProvider,
        estimator: PoseEstimator,
        classifier: Optional[PostureClassifier] = None,
        period: float = DEFAULT_PERIOD,
    ) -> None:
        if period <= 0:
            raise ValueError("period must be positive")
        self._frame_provider = frame_provider
        self._estimator = estimator
        self._classifier = classifier or PostureClassifier()
        self.period = period
        self._state = LoopState.STOPPED
        self._consumers: List[Consumer] = []
        self._timer: Optional[asyncio.Task[None]] = None
        self._token: Optional[CancellationToken] = None
        self._pending: Set[asyncio.Task[None]] = set()
        self.stats = LoopStats()
        self.rate = FPSMeter(window=10)

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state != LoopState.STOPPED

    def add_consumer(self, consumer: Consumer) -> None:
        self._consumers.append(consumer)

    def remove_consumer(self, consumer: Consumer) -> None:
        if consumer in self._consumers:
            self._consumers.remove(consumer)

    def start(self) -> None:
        if self._state != LoopState.STOPPED:
            raise InvalidTransitionError(f"analysis loop already {self._state.value}")
        self._state = LoopState.RUNNING
        self.rate.reset()
        self._timer = asyncio.get_running_loop().create_task(self._run_timer(), name="posture-analysis-timer")
        logger.info("Analysis loop started (period={:.0f} ms)", self.period * 1000)

    def stop(self) -> None:
        if self._state == LoopState.STOPPED:
            raise InvalidTransitionError("analysis loop is not running")
        timer = self._timer
        self._timer = None
        if timer is not None:
            timer.cancel()
        if self._token is not None:
            self._token.cancel()
            self._token = None
        self._state = LoopState.STOPPED
        logger.info("Analysis loop stopped")

    async def drain(self) -> None:
        """Wait for discarded estimations to finish; used on shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _run_timer(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        while True:
            deadline += self.period
            await asyncio.sleep(max(0.0, deadline - loop.time()))
            if loop.time() - deadline > self.period:
                # fell behind; realign instead of firing a burst of catch-up ticks
                deadline = loop.time()
            self.tick()

    def tick(self) -> None:
        """Handle one timer tick. Check-and-set of BUSY happens here, synchronously."""
        self.stats.ticks += 1
        if self._state == LoopState.BUSY:
            self.stats.skipped_busy += 1
            return
        if self._state != LoopState.RUNNING:
            return
        if self._pending:
            # a call discarded by an earlier stop() is still running
            self.stats.skipped_busy += 1
            return
        try:
            frame = self._frame_provider()
        except Exception:
            self.stats.frame_errors += 1
            logger.exception("Could not read a frame, skipping tick")
            return
        if frame is None:
            self.stats.skipped_no_frame += 1
            return
        token = CancellationToken()
        self._token = token
        self._state = LoopState.BUSY
        self.stats.estimations_started += 1
        task = asyncio.get_running_loop().create_task(self._estimate(frame, token))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _estimate(self, frame: np.ndarray, token: CancellationToken) -> None:
        try:
            poses = await self._estimator.estimate(frame)
        except EstimationFailure as exc:
            logger.warning("Pose estimation failed, skipping tick: {}", exc)
            self._finish_failed(token)
            return
        except Exception:
            logger.exception("Unexpected error from pose estimator, skipping tick")
            self._finish_failed(token)
            return
        finally:
            self.stats.estimations_completed += 1

        if token.cancelled:
            self.stats.discarded += 1
            logger.debug("Discarding estimation that finished after stop()")
            return
        self._token = None
        self._state = LoopState.RUNNING
        result = self._classifier.classify(poses)
        event = AnalysisEvent(result=result, pose=poses[0] if poses else None, frame=frame)
        self.rate.tick()
        self._emit(event)

    def _finish_failed(self, token: CancellationToken) -> None:
        self.stats.estimation_failures += 1
        if token.cancelled:
            return
        self._token = None
        self._state = LoopState.RUNNING

    def _emit(self, event: AnalysisEvent) -> None:
        self.stats.emitted += 1
        for consumer in list(self._consumers):
            try:
                consumer(event)
            except Exception:
                logger.exception("Analysis consumer {} failed", getattr(consumer, "__name__", consumer))
