from __future__ import annotations

from typing import Any, Callable, List

import cv2


def enumerate_cameras(
    max_devices: int = 6,
    backend: int = cv2.CAP_ANY,
    capture_factory: Callable[..., Any] = cv2.VideoCapture,
) -> List[int]:
    indices: List[int] = []
    for idx in range(max_devices):
        cap = capture_factory(idx, backend)
        if cap.isOpened():
            indices.append(idx)
        cap.release()
    return indices


def configure_capture(cap: Any, width: int, height: int, fps: int = 30) -> None:
    cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
    cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
    cap.set(cv2.CAP_PROP_FPS, fps)
