"""Logging setup for the role cache services and admin CLI.

Features:
- JSON-formatted output for log shipping, or colored console lines
- Correlation IDs tying together the log lines of one invocation
- Cache metadata (family, lookup status, master version) carried via ``extra``
"""

import json
import logging
import sys
import threading
import uuid
from datetime import datetime, timezone

# Record attributes that belong to logging itself, not to ``extra``
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "taskName",
    }
)

CONTEXT_ATTRS = (
    "cache_family",
    "lookup_status",
    "master_version",
    "source_name",
    "user_email",
)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds a correlation ID to all log records."""

    def __init__(self, correlation_id: str | None = None):
        super().__init__()
        self.correlation_id = correlation_id or str(uuid.uuid4())

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = self.correlation_id
        return True


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for attr in CONTEXT_ATTRS:
            value = getattr(record, attr, None)
            if value is not None:
                log_data[attr] = value

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key not in _RESERVED_ATTRS and key not in log_data:
                    log_data[key] = value

        return json.dumps(log_data, default=str, separators=(",", ":"))


class ConsoleFormatter(logging.Formatter):
    """Colored single-line console formatter."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")

        parts = [f"{color}{record.levelname}{self.RESET}", timestamp, record.name]

        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id:
            parts.append(f"CID:{correlation_id[:8]}")

        context = [
            f"{attr}:{getattr(record, attr)}" for attr in CONTEXT_ATTRS if hasattr(record, attr)
        ]
        if context:
            parts.append(f"[{', '.join(context)}]")

        parts.append(record.getMessage())
        line = " | ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


_configure_lock = threading.Lock()


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    correlation_id: str | None = None,
) -> CorrelationIdFilter:
    """Configure the root logger.

    Replaces existing root handlers, so calling it twice does not duplicate
    output.

    Args:
        level: Log level name
        json_output: Emit JSON lines instead of colored console lines
        correlation_id: Correlation ID for this process (generated if None)

    Returns:
        The installed CorrelationIdFilter
    """
    with _configure_lock:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        for existing in [f for f in root_logger.filters if isinstance(f, CorrelationIdFilter)]:
            root_logger.removeFilter(existing)

        numeric_level = getattr(logging, level.upper(), logging.INFO)
        root_logger.setLevel(numeric_level)

        correlation_filter = CorrelationIdFilter(correlation_id)
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonFormatter() if json_output else ConsoleFormatter())
        handler.setLevel(numeric_level)
        # Filters on the handler also see records propagated from child loggers
        handler.addFilter(correlation_filter)
        root_logger.addHandler(handler)

        # Driver chatter is rarely useful below WARNING
        for noisy in ("pymongo", "redis"):
            logging.getLogger(noisy).setLevel(max(numeric_level, logging.WARNING))

        return correlation_filter
