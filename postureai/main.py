from __future__ import annotations

import argparse
import asyncio
import time
from pathlib import Path
from typing import Optional

import cv2
import numpy as np
from loguru import logger

from postureai.capture.frame_source import CameraOrigin, DeviceAccessError, FileOrigin, Origin
from postureai.logic.rules import PostureClassifier, PostureThresholds, load_thresholds
from postureai.pose.base import InitializationFailure, ThreadedPoseEstimator
from postureai.pose.mediapipe_pose import MediaPipePoseEstimator
from postureai.session import PostureSession
from postureai.ui.config_panel import ConfigCancelledError, prompt_user_config
from postureai.ui.overlay import PostureOverlay
from postureai.utils.camera import enumerate_cameras
from postureai.utils.config import RuntimeConfig, load_runtime_config
from postureai.utils.logging_utils import configure_logging
from postureai.utils.structures import AnalysisEvent, FrameSourceStatus

WINDOW_NAME = "PostureAI"
DISPLAY_INTERVAL = 1 / 30
STATS_INTERVAL = 5.0


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Real-time posture analysis from a camera or video file")
    parser.add_argument("--mode", type=str, default="webcam", choices=["webcam", "upload"], help="Input source")
    parser.add_argument("--video", type=Path, default=None, help="Video file to analyze in upload mode")
    parser.add_argument("--camera", type=int, default=-1, help="Camera index (-1 for config / auto)")
    parser.add_argument("--runtime-config", type=Path, default=Path("configs/runtime.yaml"), help="Runtime configuration")
    parser.add_argument("--rules-config", type=Path, default=None, help="Posture rule thresholds (overrides runtime config)")
    parser.add_argument("--period-ms", type=int, default=None, help="Override analysis period from runtime config")
    parser.add_argument("--exact-constraints", action="store_true", help="Fail if the camera cannot deliver the requested size")
    parser.add_argument("--headless", action="store_true", help="Log results instead of opening a window")
    parser.add_argument("--duration", type=float, default=None, help="Stop after this many seconds")
    parser.add_argument("--log-level", type=str, default="INFO", help="Loguru log level")
    return parser.parse_args(argv)


def build_classifier(runtime_cfg: RuntimeConfig, rules_path: Optional[Path]) -> PostureClassifier:
    path = rules_path or runtime_cfg.rules.get("thresholds_path")
    if path and Path(path).is_file():
        thresholds = load_thresholds(path)
        logger.info("Loaded posture thresholds from {}", path)
    else:
        thresholds = PostureThresholds.from_dict(runtime_cfg.rules.get("thresholds"))
    return PostureClassifier(thresholds)


def build_session(runtime_cfg: RuntimeConfig, classifier: PostureClassifier, period: float) -> PostureSession:
    mp_cfg = runtime_cfg.mediapipe

    def estimator_factory() -> ThreadedPoseEstimator:
        return ThreadedPoseEstimator(
            MediaPipePoseEstimator(
                model_complexity=int(mp_cfg.get("model_complexity", 1)),
                smooth_landmarks=bool(mp_cfg.get("smooth_landmarks", True)),
                min_detection_confidence=float(mp_cfg.get("min_detection_confidence", 0.5)),
                min_tracking_confidence=float(mp_cfg.get("min_tracking_confidence", 0.5)),
            )
        )

    return PostureSession(
        estimator_factory=estimator_factory,
        classifier=classifier,
        period=period,
        camera_enabled=runtime_cfg.camera_enabled,
        flip=bool(runtime_cfg.frame.get("flip", False)),
    )


def log_result(event: AnalysisEvent) -> None:
    result = event.result
    if result.is_good_posture:
        logger.info("Good posture (confidence {:.1f}%)", result.confidence * 100)
    else:
        logger.info("Poor posture: {} (confidence {:.1f}%)", "; ".join(result.issues), result.confidence * 100)


def render_message(lines: list[str], width: int, height: int) -> np.ndarray:
    canvas = np.zeros((height, width, 3), dtype=np.uint8)
    for idx, line in enumerate(lines):
        cv2.putText(canvas, line, (24, 48 + idx * 32), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (68, 68, 239) if idx == 0 else (220, 220, 220), 1, cv2.LINE_AA)
    return canvas


async def run_session(
    session: PostureSession,
    origins: dict[str, Origin],
    mode: str,
    overlay: Optional[PostureOverlay],
    show_skeleton: bool,
    log_stats: bool,
    duration: Optional[float],
    frame_size: tuple[int, int],
) -> None:
    try:
        await session.start(origins[mode])
    except DeviceAccessError as exc:
        logger.error("{}", exc.reason.message)
        if overlay is None:
            return

    started = time.monotonic()
    last_stats = started
    while True:
        now = time.monotonic()
        if duration is not None and now - started >= duration:
            break
        if overlay is None and session.frame_source is not None and session.frame_source.ended:
            logger.info("Video finished")
            break
        if log_stats and now - last_stats >= STATS_INTERVAL and session.analysis_loop is not None:
            stats = session.analysis_loop.stats
            logger.info(
                "[Stats] {:.1f} analyses/s | ticks {} | busy skips {} | failures {}",
                session.analysis_loop.rate.get_fps(),
                stats.ticks,
                stats.skipped_busy,
                stats.estimation_failures,
            )
            last_stats = now

        if overlay is not None:
            key = show_frame(session, overlay, show_skeleton, frame_size)
            if key == ord("q"):
                break
            if key == ord(" ") and session.source_status in (FrameSourceStatus.ACTIVE, FrameSourceStatus.PAUSED):
                session.toggle_pause()
            elif key == ord("r"):
                session.reset()
            elif key == ord("t") and session.source_status == FrameSourceStatus.ERROR:
                await _start_quietly(session, None)
            elif key == ord("m") and len(origins) > 1:
                mode = "upload" if mode == "webcam" else "webcam"
                await _start_quietly(session, origins[mode])
        await asyncio.sleep(DISPLAY_INTERVAL)


async def _start_quietly(session: PostureSession, origin: Optional[Origin]) -> None:
    try:
        if origin is None:
            await session.retry()
        else:
            await session.switch_origin(origin)
    except DeviceAccessError as exc:
        logger.error("{}", exc.reason.message)


def show_frame(session: PostureSession, overlay: PostureOverlay, show_skeleton: bool, frame_size: tuple[int, int]) -> int:
    width, height = frame_size
    if session.device_error is not None:
        canvas = render_message(
            ["Webcam Access Error", session.device_error.message, "Press t to try again, m to switch mode, q to quit."],
            width,
            height,
        )
    else:
        frame = session.display_frame()
        if frame is None:
            canvas = render_message(["Waiting for video...", "Press space to resume, q to quit."], width, height)
        else:
            current = session.current
            status_line = None
            if session.source_status == FrameSourceStatus.PAUSED:
                status_line = "Paused - press space to resume"
            canvas = overlay.draw(
                frame,
                current.pose if current else None,
                current.result if current else None,
                success_rate=session.history.success_rate if session.history.total else None,
                show_skeleton=show_skeleton,
                status_line=status_line,
            )
    cv2.imshow(WINDOW_NAME, canvas)
    return cv2.waitKey(1) & 0xFF


async def main_async(args: argparse.Namespace) -> None:
    runtime_cfg = load_runtime_config(args.runtime_config)
    display_cfg = runtime_cfg.display
    show_skeleton = bool(display_cfg.get("show_skeleton", True))
    show_guidance = bool(display_cfg.get("show_guidance", True))
    log_stats = bool(runtime_cfg.analysis.get("log_stats", False))
    mode = args.mode
    video_path = args.video
    camera_index = args.camera if args.camera >= 0 else int(runtime_cfg.camera.get("index", 0))

    if not args.headless:
        available_cameras = enumerate_cameras()
        try:
            selection = prompt_user_config(
                mode,
                available_cameras,
                video_path,
                show_skeleton,
                show_guidance,
                log_stats,
            )
        except ConfigCancelledError:
            print("Setup cancelled by user. Exiting.")
            return
        mode = selection.mode
        camera_index = selection.camera_index
        video_path = selection.video_path
        show_skeleton = selection.show_skeleton
        show_guidance = selection.show_guidance
        log_stats = selection.log_stats

    width = int(runtime_cfg.frame.get("target_width", 640))
    height = int(runtime_cfg.frame.get("target_height", 480))
    origins: dict[str, Origin] = {
        "webcam": CameraOrigin(
            index=camera_index,
            width=width,
            height=height,
            exact=args.exact_constraints or bool(runtime_cfg.camera.get("exact_constraints", False)),
        )
    }
    if video_path is not None:
        origins["upload"] = FileOrigin(video_path)
    elif mode == "upload":
        raise SystemExit("Upload mode needs a video file; pass --video PATH.")

    period = (args.period_ms / 1000.0) if args.period_ms else runtime_cfg.period_seconds
    classifier = build_classifier(runtime_cfg, args.rules_config)
    session = build_session(runtime_cfg, classifier, period)

    overlay: Optional[PostureOverlay] = None
    if args.headless:
        session.add_consumer(log_result)
    else:
        overlay = PostureOverlay(
            alpha=float(display_cfg.get("overlay_alpha", 0.85)),
            font_scale=float(display_cfg.get("font_scale", 0.6)),
            metric_font_scale=float(display_cfg.get("metric_font_scale", 0.5)),
            margin=int(display_cfg.get("hud_margin", 16)),
            min_score=classifier.thresholds.min_keypoint_score,
            show_guidance=show_guidance,
        )

    try:
        session.initialize()
    except InitializationFailure as exc:
        logger.error("{}. Restart the application to try again.", exc)
        return

    try:
        await run_session(session, origins, mode, overlay, show_skeleton, log_stats, args.duration, (width, height))
    finally:
        await session.shutdown()
        if overlay is not None:
            cv2.destroyAllWindows()
        summary = session.history.summary()
        logger.info(
            "Analyses: {} | good: {} | success rate: {}% | trend: {}",
            summary["total"],
            summary["good"],
            summary["successRate"],
            summary["trend"],
        )
        for issue, count in session.history.most_common_issues():
            logger.info("  {} x{}", issue, count)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_level)
    try:
        asyncio.run(main_async(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
