from __future__ import annotations
import functools
import logging
import os
import sys
import json
import time
from typing import Optional
from datetime import datetime, timezone
from pathlib import Path

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'message'
}

# Loggers of the libraries we drive; their INFO output drowns ours
_NOISY_LOGGERS = ("aiohttp", "asyncio", "trafilatura", "htmldate", "courlan", "redis")


def _extra_context(record: logging.LogRecord) -> dict:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, including any ``extra=`` context."""

    def __init__(self, service_name: str = "codexmirror"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "service": self.service_name,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_extra_context(record))

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class ColoredFormatter(logging.Formatter):
    """Single-line console output, colored by level."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        line = f"{timestamp} | {record.levelname:8} | {record.name} | {record.getMessage()}"

        context = _extra_context(record)
        if context:
            line += " | " + " ".join(f"{k}={v}" for k, v in context.items())

        if self.use_colors and record.levelname in self.COLORS:
            line = f"{self.COLORS[record.levelname]}{line}{self.RESET}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


def _handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    level: Optional[str] = None,
    service_name: str = "codexmirror",
    log_file: Optional[str] = None,
    use_json: bool = False,
    use_colors: bool = True
) -> None:
    """Configure root logging for a process embedding codexmirror.

    Args:
        level: Log level name; defaults to ``CODEXMIRROR_LOG_LEVEL`` or INFO
        service_name: Service name stamped on JSON records
        log_file: Optional path of a JSON log file
        use_json: Emit JSON on the console instead of colored lines
        use_colors: Color console lines by level
    """
    level_name = (level or os.getenv("CODEXMIRROR_LOG_LEVEL", "INFO")).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)

    console_formatter = JSONFormatter(service_name) if use_json else ColoredFormatter(use_colors)
    root_logger.addHandler(_handler(logging.StreamHandler(sys.stdout), numeric_level, console_formatter))

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        # Files always get JSON
        root_logger.addHandler(_handler(logging.FileHandler(log_file), numeric_level, JSONFormatter(service_name)))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


def log_slow_call(threshold_ms: float, logger_name: Optional[str] = None):
    """Decorator warning when an async call takes longer than ``threshold_ms``."""
    def decorator(func):
        logger = get_logger(logger_name or func.__module__)

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return await func(*args, **kwargs)
            finally:
                duration_ms = (time.time() - start_time) * 1000
                if duration_ms > threshold_ms:
                    logger.warning(
                        f"Slow call: {func.__name__}",
                        extra={"duration_ms": round(duration_ms, 1), "threshold_ms": threshold_ms}
                    )

        return wrapper
    return decorator
