from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path


_configured = False

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
PACKAGE_LOGGER = "buildgraph"


def _ensure_base_logger() -> None:
    global _configured
    if _configured:
        return
    level = os.getenv("BUILDGRAPH_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    _ensure_base_logger()
    return logging.getLogger(name)


def attach_log_file(log_file: Path, logger_name: str = PACKAGE_LOGGER) -> RotatingFileHandler:
    """Mirror everything under `logger_name` into a rotating build log.

    Attaching the same file twice returns the existing handler.
    """
    logger = get_logger(logger_name)
    target = str(Path(log_file).resolve())
    for h in logger.handlers:
        if isinstance(h, RotatingFileHandler) and h.baseFilename == target:
            return h
    Path(target).parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(target, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    return handler


def detach_log_file(handler: RotatingFileHandler, logger_name: str = PACKAGE_LOGGER) -> None:
    get_logger(logger_name).removeHandler(handler)
    handler.close()
