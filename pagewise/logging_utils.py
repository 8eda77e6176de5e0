from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any, Dict

# extra={...} keys that are copied into JSON log lines when present
CONTEXT_FIELDS = ("session", "url", "chunks", "query", "elapsed_ms")

NOISY_LOGGERS = (
    "urllib3",
    "requests",
    "httpx",
    "filelock",
    "huggingface_hub",
    "sentence_transformers",
    "fastembed",
    "asyncio",
)


class _PlainFormatter(logging.Formatter):
    """Single-line text for humans, on stderr."""

    default_fmt = "%(levelname)s %(name)s - %(message)s"
    verbose_fmt = "%(asctime)s %(levelname)s %(name)s %(filename)s:%(lineno)d - %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    def __init__(self, debug: bool = False) -> None:
        super().__init__(fmt=self.verbose_fmt if debug else self.default_fmt, datefmt=self.datefmt)


class _JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "file": record.filename,
            "line": record.lineno,
        }
        for key in CONTEXT_FIELDS:
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _coerce_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        upper = level.strip().upper()
        if upper in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}:
            return getattr(logging, upper)
        if upper.isdigit():
            return int(upper)
    return logging.INFO


def setup_logging(
    level: str | int | None = None,
    json_logs: bool = False,
    propagate_root: bool = False,
) -> None:
    """
    Configure root logging for the process.

    Args:
        level: Logging level; falls back to the LOG_LEVEL env var, then INFO.
        json_logs: Emit JSON lines instead of plain text (both go to stderr).
        propagate_root: Let records bubble to parent handlers.
    """
    final_level = _coerce_level(level or os.getenv("LOG_LEVEL") or logging.INFO)

    root = logging.getLogger()
    root.setLevel(final_level)
    # replace rather than stack handlers when called twice (REPL, tests)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(stream=sys.stderr)
    if json_logs:
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(_PlainFormatter(debug=final_level <= logging.DEBUG))
    root.addHandler(handler)
    root.propagate = propagate_root

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(final_level, logging.WARNING))


class SessionLogAdapter(logging.LoggerAdapter):
    """Stamps records with the page session they belong to; per-call ``extra`` wins."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def session_logger(name: str, session_key: str, url: str = "") -> SessionLogAdapter:
    return SessionLogAdapter(logging.getLogger(name), {"session": session_key, "url": url})
