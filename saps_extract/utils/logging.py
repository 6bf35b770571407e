from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from threading import local
from typing import Any

LOGGER_NAME = "saps_extract"

_CONTEXT_FIELDS = ("document_ref", "user_id", "batch_index", "stage")

_log_ctx = local()


def set_log_context(**kwargs: Any) -> None:
    for key, value in kwargs.items():
        setattr(_log_ctx, key, value)


def clear_log_context(keys: list[str] | None = None) -> None:
    if keys is None:
        _log_ctx.__dict__.clear()
        return
    for key in keys:
        _log_ctx.__dict__.pop(key, None)


def get_log_context() -> dict[str, Any]:
    return {k: v for k, v in _log_ctx.__dict__.items() if not k.startswith("_")}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()
        data: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                "%Y-%m-%dT%H:%M:%SZ"
            ),
            "level": record.levelname,
            "logger": record.name,
        }
        for field_name in _CONTEXT_FIELDS:
            data[field_name] = getattr(record, field_name, ctx.get(field_name))
        data["msg"] = record.getMessage()

        if hasattr(record, "duration_ms"):
            data["duration_ms"] = record.duration_ms
        if hasattr(record, "metrics"):
            data["metrics"] = record.metrics
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)

        data = {k: v for k, v in data.items() if v is not None}
        return json.dumps(data, ensure_ascii=False)


def setup_logging(
    level: int | str = logging.INFO,
    log_file: Path | str | None = None,
) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()

    formatter = JsonFormatter()

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
