"""
Serenity Logging — colorized dev output, JSON in production.

Configured once via setup_logging(). Env vars:
    SERENITY_LOG_LEVEL  — DEBUG / INFO / WARNING / ERROR (default: INFO)
    SERENITY_LOG_COLOR  — true / false / auto (default: auto, TTY detection)
    SERENITY_LOG_FORMAT — text / json (default: text)

Structured fields (pass via logger.info(..., extra={...})):
    cycle_id, kind, status, duration_ms, task_id, error_kind
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone

_RESET = "\033[0m"
_DIM = "\033[2m"

LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[1;31m",
}

_STRUCTURED_FIELDS = (
    "cycle_id",
    "kind",
    "status",
    "duration_ms",
    "task_id",
    "error_kind",
)

_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "openai",
    "openai._base_client",
    "uvicorn.access",
)


class ColorFormatter(logging.Formatter):
    """Terminal formatter; colors the level and dims the logger name."""

    def __init__(self, use_color: bool = True):
        super().__init__(
            fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_color:
            return super().format(record)

        levelname, name = record.levelname, record.name
        record.levelname = f"{LEVEL_COLORS.get(levelname, '')}{levelname}{_RESET}"
        record.name = f"{_DIM}{name}{_RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname, record.name = levelname, name


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, with structured extras at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in _STRUCTURED_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class CycleTimer:
    """Stage timings for one refresh cycle.

    Usage:
        timer = CycleTimer()
        timer.mark("content")
        timer.mark("media")
        timer.summary()  # -> "content: 1.2s | media: 64.0s | Total: 65.2s"
    """

    def __init__(self):
        self._start = time.monotonic()
        self._marks: list[tuple[str, float]] = []

    def mark(self, stage: str) -> None:
        self._marks.append((stage, time.monotonic()))

    def total_ms(self) -> float:
        return (time.monotonic() - self._start) * 1000

    def summary(self) -> str:
        parts = []
        prev = self._start
        for name, ts in self._marks:
            parts.append(f"{name}: {ts - prev:.1f}s")
            prev = ts
        parts.append(f"Total: {self.total_ms() / 1000:.1f}s")
        return " | ".join(parts)


def _should_use_color() -> bool:
    env_val = os.getenv("SERENITY_LOG_COLOR", "auto").lower()
    if env_val in ("true", "false"):
        return env_val == "true"
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def setup_logging() -> None:
    """Configure the root logger. Call once at startup."""
    level_name = os.getenv("SERENITY_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    log_format = os.getenv("SERENITY_LOG_FORMAT", "text").lower()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ColorFormatter(use_color=_should_use_color())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger("serenity").debug(
        "Logging configured (level=%s, format=%s)", level_name, log_format
    )
