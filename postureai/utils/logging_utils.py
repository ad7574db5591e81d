from __future__ import annotations

import logging
import os
import sys
import warnings

from loguru import logger

_LOG_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"


class InterceptHandler(logging.Handler):
    """Route stdlib logging records (absl, mediapipe, asyncio) into Loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - thin wrapper
        try:
            level_name = logger.level(record.levelname).name
        except ValueError:
            level_name = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level_name, record.getMessage())


def quiet_model_backends() -> None:
    """Silence the TensorFlow Lite / protobuf chatter mediapipe prints on load."""
    os.environ.setdefault("TF_CPP_MIN_LOG_LEVEL", "2")
    warnings.filterwarnings("ignore", message=r"SymbolDatabase\.GetPrototype\(\) is deprecated", category=UserWarning)
    logging.getLogger("absl").setLevel(logging.ERROR)


def configure_logging(level: str = "INFO", enqueue: bool = True) -> None:
    """Configure Loguru to replace the standard logging handlers."""
    logger.remove()
    logger.add(sys.stderr, format=_LOG_FORMAT, level=level.upper(), enqueue=enqueue, backtrace=True, diagnose=False)
    logging.basicConfig(handlers=[InterceptHandler()], level=level.upper(), force=True)
    quiet_model_backends()
