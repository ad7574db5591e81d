from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np


class BodyPart(IntEnum):
    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, label: str) -> "BodyPart":
        return cls[label.upper()]


NUM_BODY_PARTS = len(BodyPart)


@dataclass(frozen=True)
class Keypoint:
    part: BodyPart
    x: float
    y: float
    score: float

    @property
    def name(self) -> str:
        return self.part.label


@dataclass(frozen=True, eq=False)
class Pose:
    """One detected person.

    ``keypoints`` has shape (17, 3) -> x, y, score, indexed by ``BodyPart``.
    Joints the estimator did not report are stored as NaN rows.
    """

    keypoints: np.ndarray
    image_size: Tuple[int, int] = (0, 0)

    def __post_init__(self) -> None:
        data = np.array(self.keypoints, dtype=np.float64, copy=True)
        if data.shape != (NUM_BODY_PARTS, 3):
            raise ValueError(f"Pose keypoints must have shape ({NUM_BODY_PARTS}, 3), got {data.shape}")
        data.setflags(write=False)
        object.__setattr__(self, "keypoints", data)

    @classmethod
    def empty(cls, image_size: Tuple[int, int] = (0, 0)) -> "Pose":
        return cls(np.full((NUM_BODY_PARTS, 3), np.nan), image_size)

    @classmethod
    def from_keypoints(cls, keypoints: List[Keypoint], image_size: Tuple[int, int] = (0, 0)) -> "Pose":
        data = np.full((NUM_BODY_PARTS, 3), np.nan)
        for kp in keypoints:
            data[int(kp.part)] = (kp.x, kp.y, kp.score)
        return cls(data, image_size)

    @classmethod
    def from_mapping(
        cls,
        points: Dict[str, Tuple[float, float, float]],
        image_size: Tuple[int, int] = (0, 0),
    ) -> "Pose":
        return cls.from_keypoints(
            [Keypoint(BodyPart.from_label(name), x, y, score) for name, (x, y, score) in points.items()],
            image_size,
        )

    def has(self, part: BodyPart) -> bool:
        return not bool(np.isnan(self.keypoints[int(part)]).any())

    def get(self, part: BodyPart) -> Optional[Keypoint]:
        if not self.has(part):
            return None
        x, y, score = self.keypoints[int(part)]
        return Keypoint(part, float(x), float(y), float(score))

    def __iter__(self) -> Iterator[Keypoint]:
        for part in BodyPart:
            kp = self.get(part)
            if kp is not None:
                yield kp

    def __len__(self) -> int:
        return int((~np.isnan(self.keypoints).any(axis=1)).sum())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Pose):
            return NotImplemented
        return self.image_size == other.image_size and np.array_equal(
            self.keypoints, other.keypoints, equal_nan=True
        )


@dataclass(frozen=True)
class AnalysisResult:
    is_good_posture: bool
    issues: Tuple[str, ...]
    confidence: float
    timestamp: float

    def __post_init__(self) -> None:
        if self.is_good_posture != (len(self.issues) == 0):
            raise ValueError("is_good_posture must be True exactly when there are no issues")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")

    @classmethod
    def from_issues(cls, issues: List[str], confidence: float, timestamp: float) -> "AnalysisResult":
        return cls(
            is_good_posture=not issues,
            issues=tuple(issues),
            confidence=float(confidence),
            timestamp=timestamp,
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "isGoodPosture": self.is_good_posture,
            "issues": list(self.issues),
            "confidence": self.confidence,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class AnalysisEvent:
    """What the analysis loop hands to its consumers for one completed tick."""

    result: AnalysisResult
    pose: Optional[Pose] = None
    frame: Optional[np.ndarray] = field(default=None, compare=False, repr=False)


class FrameSourceStatus(str, Enum):
    STOPPED = "stopped"
    REQUESTING = "requesting"
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


class LoopState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    BUSY = "busy"


class InvalidTransitionError(RuntimeError):
    """Raised when a lifecycle operation is called from a state that does not allow it."""
