"""didanchor.core.log

Logging setup. Modules log through ``logging.getLogger(__name__)`` with a
snake_case event name as the message and structured fields in ``extra``.

This module only decides where those records go and what they look like.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from didanchor.core.config import LoggingConfig
from didanchor.security.redaction import redact_secrets, sanitize_for_log

_ROOT_LOGGER = "didanchor"

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _RESERVED}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, secrets redacted."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        entry.update(_extra_fields(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(sanitize_for_log(entry), default=str, sort_keys=True)


class PlainFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extra = _extra_fields(record)
        if extra:
            fields = " ".join(f"{k}={v}" for k, v in sorted(sanitize_for_log(extra).items()))
            line = f"{line} {fields}"
        return redact_secrets(line)


def configure_logging(config: LoggingConfig | None = None, *, stream: Any = None) -> logging.Logger:
    """Install a single handler on the package logger. Idempotent."""

    cfg = config or LoggingConfig()
    logger = logging.getLogger(_ROOT_LOGGER)
    level = logging.getLevelName(cfg.level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)

    for h in list(logger.handlers):
        if getattr(h, "_didanchor_handler", False):
            logger.removeHandler(h)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter() if cfg.json_output else PlainFormatter())
    handler._didanchor_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.propagate = False
    return logger
