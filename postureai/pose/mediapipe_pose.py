from __future__ import annotations

from typing import List

import cv2
import numpy as np

from postureai.logic.geometry import MEDIAPIPE_TO_COCO
from postureai.pose.base import InitializationFailure
from postureai.utils.structures import NUM_BODY_PARTS, Pose


class MediaPipePoseEstimator:
    """MediaPipe Pose mapped onto the COCO-17 joint set in pixel coordinates.

    MediaPipe tracks a single person, so the result holds at most one pose.
    Landmark visibility is used as the keypoint score.
    """

    def __init__(
        self,
        model_complexity: int = 1,
        smooth_landmarks: bool = True,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
    ) -> None:
        try:
            import mediapipe as mp

            self.pose = mp.solutions.pose.Pose(
                static_image_mode=False,
                model_complexity=model_complexity,
                smooth_landmarks=smooth_landmarks,
                enable_segmentation=False,
                min_detection_confidence=min_detection_confidence,
                min_tracking_confidence=min_tracking_confidence,
            )
        except Exception as exc:
            raise InitializationFailure(f"Failed to initialize pose detector: {exc}") from exc

    def estimate(self, frame: np.ndarray) -> List[Pose]:
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        result = self.pose.process(rgb)
        if not result.pose_landmarks:
            return []
        h, w = frame.shape[:2]
        landmarks = result.pose_landmarks.landmark
        keypoints = np.full((NUM_BODY_PARTS, 3), np.nan, dtype=np.float64)
        for part, idx in MEDIAPIPE_TO_COCO.items():
            lm = landmarks[idx]
            keypoints[int(part)] = (lm.x * w, lm.y * h, min(1.0, max(0.0, float(lm.visibility))))
        return [Pose(keypoints=keypoints, image_size=(w, h))]

    def close(self) -> None:
        self.pose.close()
