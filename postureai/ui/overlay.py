from __future__ import annotations

from typing import List, Optional, Tuple

import cv2
import numpy as np

from postureai.logic.history import ISSUE_GUIDANCE
from postureai.utils.structures import AnalysisResult, BodyPart, Pose


POSE_CONNECTIONS = [
    (BodyPart.NOSE, BodyPart.LEFT_SHOULDER),
    (BodyPart.NOSE, BodyPart.RIGHT_SHOULDER),
    (BodyPart.LEFT_SHOULDER, BodyPart.RIGHT_SHOULDER),
    (BodyPart.LEFT_SHOULDER, BodyPart.LEFT_HIP),
    (BodyPart.RIGHT_SHOULDER, BodyPart.RIGHT_HIP),
    (BodyPart.LEFT_HIP, BodyPart.RIGHT_HIP),
    (BodyPart.LEFT_HIP, BodyPart.LEFT_KNEE),
    (BodyPart.RIGHT_HIP, BodyPart.RIGHT_KNEE),
    (BodyPart.LEFT_KNEE, BodyPart.LEFT_ANKLE),
    (BodyPart.RIGHT_KNEE, BodyPart.RIGHT_ANKLE),
]

# BGR
GOOD_COLOR: Tuple[int, int, int] = (129, 185, 16)  # #10B981
BAD_COLOR: Tuple[int, int, int] = (68, 68, 239)  # #EF4444
OUTLINE_COLOR: Tuple[int, int, int] = (255, 255, 255)
HUD_BACKGROUND: Tuple[int, int, int] = (10, 16, 30)

__all__ = [
    "PostureOverlay",
    "POSE_CONNECTIONS",
    "GOOD_COLOR",
    "BAD_COLOR",
]


def posture_color(result: AnalysisResult) -> Tuple[int, int, int]:
    return GOOD_COLOR if result.is_good_posture else BAD_COLOR


class PostureOverlay:
    def __init__(
        self,
        alpha: float = 0.85,
        font_scale: float = 0.6,
        metric_font_scale: float = 0.5,
        margin: int = 16,
        min_score: float = 0.3,
        keypoint_radius: int = 6,
        line_thickness: int = 3,
        show_guidance: bool = True,
    ) -> None:
        self.alpha = alpha
        self.font = cv2.FONT_HERSHEY_SIMPLEX
        self.font_scale = font_scale
        self.metric_font_scale = metric_font_scale
        self.margin = margin
        self.min_score = min_score
        self.keypoint_radius = max(1, keypoint_radius)
        self.line_thickness = max(1, line_thickness)
        self.show_guidance = show_guidance

    def draw(
        self,
        frame: np.ndarray,
        pose: Optional[Pose],
        result: Optional[AnalysisResult],
        success_rate: Optional[float] = None,
        show_skeleton: bool = True,
        status_line: Optional[str] = None,
    ) -> np.ndarray:
        overlay = frame.copy()
        if result is not None:
            if show_skeleton and pose is not None:
                self.draw_skeleton(overlay, pose, result)
            self._draw_verdict(overlay, result, success_rate)
        if status_line:
            self._draw_text_block(overlay, [status_line], self.metric_font_scale, (200, 200, 200), 1, self.margin, overlay.shape[0] - self.margin - 30)
        return cv2.addWeighted(overlay, self.alpha, frame, 1 - self.alpha, 0)

    def draw_skeleton(self, frame: np.ndarray, pose: Pose, result: AnalysisResult) -> None:
        color = posture_color(result)
        for start_part, end_part in POSE_CONNECTIONS:
            start = pose.get(start_part)
            end = pose.get(end_part)
            if start is None or end is None:
                continue
            if start.score <= self.min_score or end.score <= self.min_score:
                continue
            cv2.line(
                frame,
                (int(start.x), int(start.y)),
                (int(end.x), int(end.y)),
                color,
                self.line_thickness,
                cv2.LINE_AA,
            )
        for kp in pose:
            if kp.score <= self.min_score:
                continue
            center = (int(kp.x), int(kp.y))
            cv2.circle(frame, center, self.keypoint_radius, color, -1, cv2.LINE_AA)
            cv2.circle(frame, center, self.keypoint_radius, OUTLINE_COLOR, 2, cv2.LINE_AA)

    def _draw_verdict(self, frame: np.ndarray, result: AnalysisResult, success_rate: Optional[float]) -> None:
        color = posture_color(result)
        headline = "Good Posture!" if result.is_good_posture else "Poor Posture Detected"
        lines: List[Tuple[str, Tuple[int, int, int], float]] = [(headline, color, self.font_scale)]
        for issue in result.issues:
            lines.append((f"- {issue}", color, self.metric_font_scale))
            tip = ISSUE_GUIDANCE.get(issue) if self.show_guidance else None
            if tip:
                lines.append((f"  {tip}", (200, 200, 200), self.metric_font_scale))
        lines.append((f"Confidence: {result.confidence * 100:.1f}%", (220, 220, 220), self.metric_font_scale))
        if success_rate is not None:
            lines.append((f"Success Rate: {success_rate:.1f}%", (220, 220, 220), self.metric_font_scale))

        block_height = int(sum(self._line_height(scale) for _, _, scale in lines) + 12)
        block_width = max(cv2.getTextSize(text, self.font, scale, 1)[0][0] for text, _, scale in lines) + 24
        left = self.margin
        top = self.margin
        bg = frame.copy()
        cv2.rectangle(bg, (left, top), (left + block_width, top + block_height), HUD_BACKGROUND, -1)
        cv2.addWeighted(bg, 0.45, frame, 0.55, 0, frame)

        cursor_y = top + 6
        for text, text_color, scale in lines:
            cursor_y += self._line_height(scale)
            cv2.putText(
                frame,
                text,
                (left + 12, cursor_y - 6),
                self.font,
                scale,
                text_color,
                2 if scale >= self.font_scale else 1,
                cv2.LINE_AA,
            )

    def _draw_text_block(
        self,
        frame: np.ndarray,
        lines: List[str],
        scale: float,
        color: Tuple[int, int, int],
        thickness: int,
        x: int,
        y: int,
    ) -> None:
        if not lines:
            return
        line_height = self._line_height(scale)
        max_width = 0
        for line in lines:
            width, _ = cv2.getTextSize(line, self.font, scale, thickness)[0]
            max_width = max(max_width, width)
        top = y
        left = x
        bottom = top + line_height * len(lines) + 12
        right = left + max_width + 24
        bg = frame.copy()
        cv2.rectangle(bg, (left - 12, top - 8), (right, bottom), HUD_BACKGROUND, -1)
        cv2.addWeighted(bg, 0.45, frame, 0.55, 0, frame)
        for idx, line in enumerate(lines):
            baseline = top + 12 + idx * line_height
            cv2.putText(
                frame,
                line,
                (left, baseline),
                self.font,
                scale,
                color,
                thickness,
                cv2.LINE_AA,
            )

    def _line_height(self, scale: float) -> int:
        return max(18, int(26 * scale))
