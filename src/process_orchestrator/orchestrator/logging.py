"""Logging setup for the CLI, the review API and run sessions.

Records are rendered as one JSON object per line. Run and effect ids are
promoted to top-level keys so a run's lines can be filtered directly; any
other ``extra=`` fields are nested under ``extra``.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import UTC, datetime
from typing import Any, Literal, TextIO

CORRELATION_KEYS = ("run_id", "effect_id", "process_id")

_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

_TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s%(run)s: %(message)s"

_NOISY_LOGGERS = ("openai", "httpx", "httpcore", "urllib3")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            if key in CORRELATION_KEYS:
                if value is not None:
                    payload[key] = value
            else:
                extra[key] = value
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class _TextFormatter(logging.Formatter):
    """Human-readable lines with the run id in brackets when present."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        run_id = getattr(record, "run_id", None)
        record.run = f" [{run_id}]" if run_id else ""
        return super().format(record)


class RunLoggerAdapter(logging.LoggerAdapter):
    """Stamp every record with the owning run id."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("run_id", (self.extra or {}).get("run_id"))
        kwargs["extra"] = extra
        return msg, kwargs


def configure_logging(
    level: str,
    *,
    fmt: Literal["json", "text"] = "json",
    stream: TextIO | None = None,
) -> None:
    """Replace the root handlers with a single stream handler.

    Logs go to stderr by default because the CLI prints results on stdout.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=stream or sys.stderr)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(_TextFormatter(_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))
