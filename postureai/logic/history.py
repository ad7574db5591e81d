from __future__ import annotations

from collections import Counter
from typing import Dict, List, Tuple

from postureai.logic.rules import (
    HEAD_FORWARD,
    HIP_KNEE_ALIGNMENT,
    INSUFFICIENT_VISIBILITY,
    KNEE_OVER_TOE,
    NO_PERSON,
    SLOUCHING,
    UNEVEN_SHOULDERS,
)
from postureai.utils.structures import AnalysisEvent, AnalysisResult

ISSUE_GUIDANCE: Dict[str, str] = {
    HEAD_FORWARD: "Tuck your chin and stack your head over your shoulders.",
    UNEVEN_SHOULDERS: "Relax both shoulders and let them drop evenly.",
    SLOUCHING: "Sit back against the chair and lengthen your spine.",
    KNEE_OVER_TOE: "Sit your hips back so the knees track over the toes.",
    HIP_KNEE_ALIGNMENT: "Keep a hip-width stance with knees in line with hips.",
    NO_PERSON: "Step into the frame so the camera can see you.",
    INSUFFICIENT_VISIBILITY: "Make sure your head, shoulders, and hips are in view.",
}

GOOD_TREND_THRESHOLD = 70.0


class AnalysisHistory:
    """Append-only log of analysis results with the summary figures the HUD shows."""

    def __init__(self) -> None:
        self._results: List[AnalysisResult] = []
        self._issue_counts: Counter[str] = Counter()

    def __len__(self) -> int:
        return len(self._results)

    def __call__(self, event: AnalysisEvent) -> None:
        self.append(event.result)

    def append(self, result: AnalysisResult) -> None:
        self._results.append(result)
        self._issue_counts.update(result.issues)

    @property
    def results(self) -> Tuple[AnalysisResult, ...]:
        return tuple(self._results)

    @property
    def total(self) -> int:
        return len(self._results)

    @property
    def good_count(self) -> int:
        return sum(1 for r in self._results if r.is_good_posture)

    @property
    def success_rate(self) -> float:
        if not self._results:
            return 0.0
        return self.good_count / len(self._results) * 100.0

    @property
    def trend(self) -> str:
        return "improving" if self.success_rate >= GOOD_TREND_THRESHOLD else "declining"

    def recent(self, n: int = 10) -> List[AnalysisResult]:
        if n <= 0:
            return []
        return list(reversed(self._results[-n:]))

    def recent_good(self, n: int = 5) -> int:
        if n <= 0:
            return 0
        return sum(1 for r in self._results[-n:] if r.is_good_posture)

    def most_common_issues(self, limit: int = 5) -> List[Tuple[str, int]]:
        # Counter.most_common keeps first-seen order among equal counts
        return self._issue_counts.most_common(limit)

    def summary(self) -> Dict[str, object]:
        return {
            "total": self.total,
            "good": self.good_count,
            "successRate": round(self.success_rate, 1),
            "trend": self.trend,
            "commonIssues": self.most_common_issues(),
        }
