import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from threading import local
from typing import Iterable

LOGGER_NAME = "archive_migrator"
_CONTEXT_FIELDS = ("run_id", "doc_id", "stage")

_log_ctx = local()


def set_log_context(**kwargs):
    for k, v in kwargs.items():
        setattr(_log_ctx, k, v)


def clear_log_context(keys: Iterable[str] | None = None):
    names = list(keys) if keys is not None else list(_log_ctx.__dict__)
    for name in names:
        if hasattr(_log_ctx, name):
            delattr(_log_ctx, name)


def get_log_context() -> dict:
    return {k: v for k, v in _log_ctx.__dict__.items() if not k.startswith("_")}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()
        data = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                "%Y-%m-%dT%H:%M:%SZ"
            ),
            "level": record.levelname,
            "logger": record.name,
        }
        for field in _CONTEXT_FIELDS:
            # extra={...} wins over the thread context
            data[field] = getattr(record, field, None) or ctx.get(field)
        data["msg"] = record.getMessage()

        if hasattr(record, "duration_ms"):
            data["duration_ms"] = record.duration_ms
        if hasattr(record, "metrics"):
            data["metrics"] = record.metrics
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)

        # Clean nulls
        data = {k: v for k, v in data.items() if v is not None}
        return json.dumps(data, ensure_ascii=False, default=str)


def setup_logging(
    level=logging.INFO, log_file: Path | str | None = None
) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = JsonFormatter()

    sh = logging.StreamHandler(sys.stdout)
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    return logger
