"""Structured logging configuration for the patch notes bot."""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

ROOT_LOGGER_NAME = "patchnotes_bot"

# Context fields copied from the record into the JSON line when present
CONTEXT_FIELDS = (
    "execution_id",
    "component",
    "source_url",
    "source_kind",
    "candidate_link",
    "candidate_title",
    "state",
    "outcome",
    "marker",
    "error",
    "metrics",
)


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ExecutionLogger:
    """Logger with execution context and structured logging."""

    def __init__(self, execution_id: str, component: str = "main"):
        """Initialize execution logger.

        Args:
            execution_id: Unique identifier for this execution
            component: Component name (e.g., 'feed_fetcher', 'publisher')
        """
        self.execution_id = execution_id
        self.component = component
        self.logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None

    def _log_with_context(self, level: int, message: str, **kwargs) -> None:
        """Log message with execution context."""
        extra = {
            "execution_id": self.execution_id,
            "component": self.component,
            **kwargs,
        }
        self.logger.log(level, message, extra=extra)

    def info(self, message: str, **kwargs) -> None:
        """Log info message with context."""
        self._log_with_context(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message with context."""
        self._log_with_context(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs) -> None:
        """Log error message with context."""
        self._log_with_context(logging.ERROR, message, **kwargs)

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message with context."""
        self._log_with_context(logging.DEBUG, message, **kwargs)

    def log_execution_start(self, **kwargs) -> None:
        """Log execution start with timestamp."""
        self.start_time = datetime.now(UTC)
        self.info(
            f"Starting {self.component} execution",
            execution_start=self.start_time.isoformat(),
            **kwargs,
        )

    def log_execution_end(self, success: bool = True, **kwargs) -> None:
        """Log execution end with timestamp and duration."""
        self.end_time = datetime.now(UTC)

        duration_seconds = None
        if self.start_time:
            duration_seconds = (self.end_time - self.start_time).total_seconds()

        self.info(
            f"Completed {self.component} execution",
            execution_end=self.end_time.isoformat(),
            execution_duration_seconds=duration_seconds,
            execution_success=success,
            **kwargs,
        )

    def log_state(self, state: str, **kwargs) -> None:
        """Log a pipeline state transition."""
        self.debug(f"Entering state {state}", state=state, **kwargs)

    def log_source_fetch(self, source_url: str, candidates_count: int) -> None:
        """Log a completed source fetch with structured data."""
        self.info(
            f"Fetched source: {candidates_count} candidates found",
            source_url=source_url,
            candidates_count=candidates_count,
        )

    def log_metrics(self, metrics: dict[str, Any]) -> None:
        """Log cycle metrics."""
        self.info("Cycle metrics", metrics=metrics)


def setup_structured_logging(log_level: str = "INFO") -> None:
    """Setup structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(console_handler)

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.setLevel(level)
    package_logger.propagate = True

    # Connection-pool chatter drowns the cycle logs at DEBUG
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))
    logging.getLogger("botocore").setLevel(max(level, logging.WARNING))


def create_execution_logger(
    component: str, execution_id: str | None = None
) -> ExecutionLogger:
    """Create an execution logger for a component.

    Args:
        component: Component name
        execution_id: Optional execution ID (will generate one if not provided)

    Returns:
        ExecutionLogger instance
    """
    if not execution_id:
        execution_id = new_execution_id("exec")

    return ExecutionLogger(execution_id, component)


def new_execution_id(prefix: str) -> str:
    """Build a timestamped execution ID."""
    return f"{prefix}_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"
