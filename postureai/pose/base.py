from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Protocol

import numpy as np

from postureai.utils.structures import Pose


class InitializationFailure(RuntimeError):
    """The pose model could not be loaded; analysis cannot start."""


class EstimationFailure(RuntimeError):
    """A single estimation call failed; the next tick may succeed."""


class PoseEstimator(Protocol):
    async def estimate(self, frame: np.ndarray) -> List[Pose]: ...

    def close(self) -> None: ...


class SyncPoseEstimator(Protocol):
    def estimate(self, frame: np.ndarray) -> List[Pose]: ...

    def close(self) -> None: ...


class ThreadedPoseEstimator:
    """Adapts a blocking estimator to the async protocol.

    Inference runs on one dedicated worker so calls never overlap, even when a
    discarded call from a stopped loop is still finishing.
    """

    def __init__(self, estimator: SyncPoseEstimator) -> None:
        self._estimator = estimator
        self._executor: Optional[ThreadPoolExecutor] = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="pose-estimator"
        )

    async def estimate(self, frame: np.ndarray) -> List[Pose]:
        if self._executor is None:
            raise EstimationFailure("estimator has been closed")
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, self._estimator.estimate, frame)
        except EstimationFailure:
            raise
        except Exception as exc:
            raise EstimationFailure(str(exc) or exc.__class__.__name__) from exc

    def close(self) -> None:
        executor = self._executor
        self._executor = None
        if executor is None:
            return
        executor.shutdown(wait=True)
        self._estimator.close()
