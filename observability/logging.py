from __future__ import annotations
import logging
import sys
import json
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from pathlib import Path

CONTEXT_PREFIX = "ctx_"

NOISY_LOGGERS = ("uvicorn", "uvicorn.access", "fastapi", "httpx", "httpcore", "openai", "aiohttp")

# Present on every LogRecord; anything else arrived through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields attached to a record via ``extra``, with the context prefix removed."""
    context = {}
    for key, value in record.__dict__.items():
        if key in _RECORD_ATTRS:
            continue
        context[key[len(CONTEXT_PREFIX):] if key.startswith(CONTEXT_PREFIX) else key] = value
    return context


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def __init__(self, service_name: str = "siteqa"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(record_context(record))
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Human-readable console lines, with context appended as key=value pairs."""

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
        when = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        level = record.levelname
        if self.use_colors and level in self.COLORS:
            level = f"{self.COLORS[level]}{level:8}{self.RESET}"
        else:
            level = f"{level:8}"

        line = f"{when} {level} {record.name}: {record.getMessage()}"
        context = record_context(record)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    service_name: str = "siteqa",
    log_file: Optional[str] = None,
    use_json: bool = False,
    use_colors: bool = True
) -> None:
    """Configure the root logger once per process.

    Args:
        level: Log level name; unknown names fall back to INFO
        service_name: Value of the ``service`` field in JSON output
        log_file: Also write JSON lines to this file
        use_json: JSON on the console instead of colored lines
        use_colors: Colorize console levels (ignored with use_json)
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(numeric_level)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(JSONFormatter(service_name) if use_json else ColoredFormatter(use_colors))
    root.addHandler(console)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter(service_name))
        root.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class StructuredLogger:
    """Logger wrapper that attaches bound context to every record."""

    def __init__(self, name: str, **default_context):
        self.logger = logging.getLogger(name)
        self.default_context = default_context

    def bind(self, **context) -> "StructuredLogger":
        return StructuredLogger(self.logger.name, **{**self.default_context, **context})

    def log(self, level: int, message: str, **context) -> None:
        merged = {**self.default_context, **context}
        self.logger.log(level, message, extra={f"{CONTEXT_PREFIX}{k}": v for k, v in merged.items()})

    def debug(self, message: str, **context) -> None:
        self.log(logging.DEBUG, message, **context)

    def info(self, message: str, **context) -> None:
        self.log(logging.INFO, message, **context)

    def warning(self, message: str, **context) -> None:
        self.log(logging.WARNING, message, **context)

    def error(self, message: str, **context) -> None:
        self.log(logging.ERROR, message, **context)


def get_structured_logger(name: str, **default_context) -> StructuredLogger:
    return StructuredLogger(name, **default_context)
