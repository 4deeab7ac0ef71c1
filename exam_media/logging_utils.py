"""Centralized logging configuration for the exam media service."""

from __future__ import annotations

import logging
from logging import Logger
from pathlib import Path
from typing import Iterable, List, Optional


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def parse_log_level(value: str | int | None, default: int = logging.INFO) -> int:
    """Return the numeric level for *value*, falling back to *default*."""

    if value is None:
        return default
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value).strip().upper())
    return level if isinstance(level, int) else default


def build_handlers(log_file: Optional[Path] = None) -> List[logging.Handler]:
    """Return a stream handler plus an optional file handler sharing one format."""

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    handlers: List[logging.Handler] = []
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)
    return handlers


def configure_logging(
    level: str | int = logging.INFO, *, handlers: Iterable[logging.Handler] | None = None
) -> Logger:
    """Configure the root logger with sensible defaults."""

    logger = logging.getLogger()
    logger.setLevel(parse_log_level(level))

    for handler in handlers if handlers is not None else build_handlers():
        logger.addHandler(handler)

    return logger


__all__ = ["build_handlers", "configure_logging", "parse_log_level", "DEFAULT_LOG_FORMAT"]
