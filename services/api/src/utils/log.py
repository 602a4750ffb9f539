"""
Environment-aware logging setup.

- development: human-readable, colourised lines
- staging/production: one JSON object per line for log aggregation

Call :func:`init` once at process start; modules obtain loggers with
:func:`get_logger`.
"""

import json
import logging
import os
import sys
from datetime import datetime
from typing import Optional


class ColoredFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "ENDC": "\033[0m",
    }

    def format(self, record: logging.LogRecord) -> str:
        level_color = self.COLORS.get(record.levelname, "")
        end_color = self.COLORS["ENDC"]
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        module_name = record.name if record.name != "__main__" else "main"
        line = (
            f"[{timestamp}] {level_color}{record.levelname:8s}{end_color} "
            f"[{module_name}] {record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
            "environment": os.getenv("ENVIRONMENT", "unknown"),
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            log_entry.update(extra)
        return json.dumps(log_entry, default=str)


def _formatter(environment: str) -> logging.Formatter:
    if environment in ("production", "prod", "staging"):
        return JsonFormatter()
    return ColoredFormatter()


def init(level: Optional[str] = None, environment: Optional[str] = None) -> None:
    """Configure the root logger. Safe to call more than once."""
    environment = (environment or os.getenv("ENVIRONMENT", "development")).lower()
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    resolved = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(resolved)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(resolved)
    handler.setFormatter(_formatter(environment))
    root.addHandler(handler)

    # uvicorn installs its own handlers; route them through ours
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv = logging.getLogger(name)
        uv.handlers.clear()
        uv.propagate = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
