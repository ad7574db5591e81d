from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import yaml

from postureai.logic.geometry import (
    average_score,
    center_x,
    center_y,
    horizontal_distance,
    require,
    vertical_distance,
    visible_keypoints,
)
from postureai.utils.profiler import NonDecreasingClock
from postureai.utils.structures import AnalysisResult, BodyPart, Pose

NO_PERSON = "No person detected"
INSUFFICIENT_VISIBILITY = "Insufficient pose visibility"
HEAD_FORWARD = "Head forward posture detected"
UNEVEN_SHOULDERS = "Uneven shoulders detected"
SLOUCHING = "Slouching detected - sit up straight"
KNEE_OVER_TOE = "Knee going over toe - adjust squat form"
HIP_KNEE_ALIGNMENT = "Poor hip-knee alignment"

RULE_ISSUES = (HEAD_FORWARD, UNEVEN_SHOULDERS, SLOUCHING, KNEE_OVER_TOE, HIP_KNEE_ALIGNMENT)

GATING_SET = (
    BodyPart.NOSE,
    BodyPart.LEFT_SHOULDER,
    BodyPart.RIGHT_SHOULDER,
    BodyPart.LEFT_HIP,
    BodyPart.RIGHT_HIP,
)


@dataclass(frozen=True)
class PostureThresholds:
    min_keypoint_score: float = 0.3
    min_visible_gating: int = 4
    head_forward_px: float = 50.0
    shoulder_slope_px: float = 30.0
    # flags when nose and hip line are closer than this
    slouch_min_spread_px: float = 200.0
    knee_over_toe_px: float = 80.0
    hip_knee_offset_px: float = 60.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PostureThresholds":
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ValueError(f"Unknown posture threshold(s): {', '.join(unknown)}")
        values: Dict[str, Any] = {}
        for key, value in data.items():
            values[key] = int(value) if key == "min_visible_gating" else float(value)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_thresholds(path: str | Path) -> PostureThresholds:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return PostureThresholds.from_dict(data.get("thresholds", data))


class PostureClassifier:
    """Turns estimator output into a posture verdict.

    Only the first pose is considered. The gate is the only place scores matter:
    once a pose passes it, every rule evaluates whichever of its joints the
    estimator reported, regardless of their individual scores.
    """

    def __init__(
        self,
        thresholds: Optional[PostureThresholds] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.thresholds = thresholds or PostureThresholds()
        self._clock = clock if clock is not None else NonDecreasingClock()

    def classify(self, poses: Sequence[Pose]) -> AnalysisResult:
        now = self._clock()
        if not poses:
            return AnalysisResult.from_issues([NO_PERSON], 0.0, now)

        pose = poses[0]
        visible = visible_keypoints(pose, GATING_SET, self.thresholds.min_keypoint_score)
        if len(visible) < self.thresholds.min_visible_gating:
            return AnalysisResult.from_issues([INSUFFICIENT_VISIBILITY], 0.0, now)

        confidence = min(1.0, max(0.0, average_score(visible)))
        issues: List[str] = []
        for rule in (
            self._head_forward,
            self._uneven_shoulders,
            self._slouching,
            self._knee_over_toe,
            self._hip_knee_alignment,
        ):
            issue = rule(pose)
            if issue is not None:
                issues.append(issue)
        return AnalysisResult.from_issues(issues, confidence, now)

    def _head_forward(self, pose: Pose) -> Optional[str]:
        lm = require(pose, (BodyPart.NOSE, BodyPart.LEFT_SHOULDER, BodyPart.RIGHT_SHOULDER))
        if lm is None:
            return None
        shoulder_center = center_x(lm[BodyPart.LEFT_SHOULDER], lm[BodyPart.RIGHT_SHOULDER])
        if abs(lm[BodyPart.NOSE].x - shoulder_center) > self.thresholds.head_forward_px:
            return HEAD_FORWARD
        return None

    def _uneven_shoulders(self, pose: Pose) -> Optional[str]:
        lm = require(pose, (BodyPart.LEFT_SHOULDER, BodyPart.RIGHT_SHOULDER))
        if lm is None:
            return None
        if vertical_distance(lm[BodyPart.LEFT_SHOULDER], lm[BodyPart.RIGHT_SHOULDER]) > self.thresholds.shoulder_slope_px:
            return UNEVEN_SHOULDERS
        return None

    def _slouching(self, pose: Pose) -> Optional[str]:
        lm = require(pose, (BodyPart.NOSE, BodyPart.LEFT_HIP, BodyPart.RIGHT_HIP))
        if lm is None:
            return None
        hip_center = center_y(lm[BodyPart.LEFT_HIP], lm[BodyPart.RIGHT_HIP])
        if abs(lm[BodyPart.NOSE].y - hip_center) < self.thresholds.slouch_min_spread_px:
            return SLOUCHING
        return None

    def _knee_over_toe(self, pose: Pose) -> Optional[str]:
        lm = require(
            pose,
            (BodyPart.LEFT_KNEE, BodyPart.RIGHT_KNEE, BodyPart.LEFT_ANKLE, BodyPart.RIGHT_ANKLE),
        )
        if lm is None:
            return None
        limit = self.thresholds.knee_over_toe_px
        if (
            horizontal_distance(lm[BodyPart.LEFT_KNEE], lm[BodyPart.LEFT_ANKLE]) > limit
            or horizontal_distance(lm[BodyPart.RIGHT_KNEE], lm[BodyPart.RIGHT_ANKLE]) > limit
        ):
            return KNEE_OVER_TOE
        return None

    def _hip_knee_alignment(self, pose: Pose) -> Optional[str]:
        lm = require(
            pose,
            (BodyPart.LEFT_HIP, BodyPart.RIGHT_HIP, BodyPart.LEFT_KNEE, BodyPart.RIGHT_KNEE),
        )
        if lm is None:
            return None
        limit = self.thresholds.hip_knee_offset_px
        if (
            horizontal_distance(lm[BodyPart.LEFT_HIP], lm[BodyPart.LEFT_KNEE]) > limit
            or horizontal_distance(lm[BodyPart.RIGHT_HIP], lm[BodyPart.RIGHT_KNEE]) > limit
        ):
            return HIP_KNEE_ALIGNMENT
        return None
