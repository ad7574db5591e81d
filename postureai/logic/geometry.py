from __future__ import annotations

from typing import Dict, Iterable, Optional, Sequence

from postureai.utils.structures import BodyPart, Keypoint, Pose


# MediaPipe Pose landmark index for each COCO-17 joint.
MEDIAPIPE_TO_COCO: Dict[BodyPart, int] = {
    BodyPart.NOSE: 0,
    BodyPart.LEFT_EYE: 2,
    BodyPart.RIGHT_EYE: 5,
    BodyPart.LEFT_EAR: 7,
    BodyPart.RIGHT_EAR: 8,
    BodyPart.LEFT_SHOULDER: 11,
    BodyPart.RIGHT_SHOULDER: 12,
    BodyPart.LEFT_ELBOW: 13,
    BodyPart.RIGHT_ELBOW: 14,
    BodyPart.LEFT_WRIST: 15,
    BodyPart.RIGHT_WRIST: 16,
    BodyPart.LEFT_HIP: 23,
    BodyPart.RIGHT_HIP: 24,
    BodyPart.LEFT_KNEE: 25,
    BodyPart.RIGHT_KNEE: 26,
    BodyPart.LEFT_ANKLE: 27,
    BodyPart.RIGHT_ANKLE: 28,
}


def center_x(a: Keypoint, b: Keypoint) -> float:
    return (a.x + b.x) / 2


def center_y(a: Keypoint, b: Keypoint) -> float:
    return (a.y + b.y) / 2


def horizontal_distance(a: Keypoint, b: Keypoint) -> float:
    return abs(a.x - b.x)


def vertical_distance(a: Keypoint, b: Keypoint) -> float:
    return abs(a.y - b.y)


def average_score(points: Iterable[Keypoint]) -> float:
    scores = [p.score for p in points]
    if not scores:
        return 0.0
    return float(sum(scores) / len(scores))


def visible_keypoints(pose: Pose, parts: Iterable[BodyPart], min_score: float) -> list[Keypoint]:
    """Keypoints from ``parts`` that are present and strictly above ``min_score``."""
    visible: list[Keypoint] = []
    for part in parts:
        kp = pose.get(part)
        if kp is not None and kp.score > min_score:
            visible.append(kp)
    return visible


def require(pose: Pose, parts: Sequence[BodyPart]) -> Optional[Dict[BodyPart, Keypoint]]:
    """All of ``parts`` keyed by joint, or None when any of them is absent."""
    found: Dict[BodyPart, Keypoint] = {}
    for part in parts:
        kp = pose.get(part)
        if kp is None:
            return None
        found[part] = kp
    return found
