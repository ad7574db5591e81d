from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml


@dataclass
class RuntimeConfig:
    frame: Dict[str, Any] = field(default_factory=dict)
    analysis: Dict[str, Any] = field(default_factory=dict)
    mediapipe: Dict[str, Any] = field(default_factory=dict)
    rules: Dict[str, Any] = field(default_factory=dict)
    display: Dict[str, Any] = field(default_factory=dict)
    camera: Dict[str, Any] = field(default_factory=dict)

    @property
    def period_seconds(self) -> float:
        return float(self.analysis.get("period_ms", 100)) / 1000.0

    @property
    def camera_enabled(self) -> bool:
        return bool(self.camera.get("enabled", True))


def load_runtime_config(path: str | Path) -> RuntimeConfig:
    path = Path(path)
    if not path.is_file():
        return RuntimeConfig()
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return RuntimeConfig(
        frame=data.get("frame", {}) or {},
        analysis=data.get("analysis", {}) or {},
        mediapipe=data.get("mediapipe", {}) or {},
        rules=data.get("rules", {}) or {},
        display=data.get("display", {}) or {},
        camera=data.get("camera", {}) or {},
    )
