"""
Structured logging configuration for recipe-reducer.

Provides consistent, machine-readable logging of every reduction stage so
that CI logs show exactly which members and packages a recipe was cut to.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

_RESERVED_ATTRS = frozenset(
    [
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "getMessage",
        "exc_info",
        "exc_text",
        "stack_info",
        "taskName",
        "message",
    ]
)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class ReductionLogger:
    """Structured logger for one stage of the reduction pipeline."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(f"recipe_reducer.{name}")
        self._setup_logger()
        self.reduction_context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.propagate = False
            self.logger.setLevel(logging.WARNING)

    def set_reduction_context(
        self,
        input_path: Optional[str] = None,
        root_members: Optional[Iterable[str]] = None,
    ) -> None:
        """Set reduction context for logging."""
        self.reduction_context = {}
        if input_path:
            self.reduction_context["input_path"] = input_path
        if root_members is not None:
            self.reduction_context["root_members"] = sorted(root_members)

    def clear_reduction_context(self) -> None:
        """Clear reduction context."""
        self.reduction_context.clear()

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        log_data = {"event_type": event_type, **self.reduction_context, **kwargs}
        self.logger.log(level, event_type, extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        """Log info level event."""
        self._log(logging.INFO, event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        """Log warning level event."""
        self._log(logging.WARNING, event_type, **kwargs)

    def error(self, event_type: str, **kwargs) -> None:
        """Log error level event."""
        self._log(logging.ERROR, event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        """Log debug level event."""
        self._log(logging.DEBUG, event_type, **kwargs)


# Global logger instances
_parser_logger = ReductionLogger("parser")
_graph_logger = ReductionLogger("graph")
_reducer_logger = ReductionLogger("reducer")

_ALL_LOGGERS = (_parser_logger, _graph_logger, _reducer_logger)


def get_parser_logger() -> ReductionLogger:
    """Get recipe parsing logger."""
    return _parser_logger


def get_graph_logger() -> ReductionLogger:
    """Get graph building and closure logger."""
    return _graph_logger


def get_reducer_logger() -> ReductionLogger:
    """Get reduction orchestration logger."""
    return _reducer_logger


def log_reduction_start(input_path: Optional[str], root_members: Iterable[str]) -> None:
    """Log reduction start event."""
    roots = sorted(root_members)
    set_reduction_context(input_path=input_path, root_members=roots)
    get_reducer_logger().info("reduction_started", input_path=input_path)


def log_reduction_complete(
    duration_ms: int,
    members_kept: int,
    members_pruned: int,
    packages_kept: int,
    packages_pruned: int,
) -> None:
    """Log reduction completion event."""
    get_reducer_logger().info(
        "reduction_completed",
        duration_ms=duration_ms,
        members_kept=members_kept,
        members_pruned=members_pruned,
        packages_kept=packages_kept,
        packages_pruned=packages_pruned,
    )
    clear_reduction_context()


def set_reduction_context(
    input_path: Optional[str] = None,
    root_members: Optional[Iterable[str]] = None,
) -> None:
    """Set global reduction context for all loggers."""
    roots = sorted(root_members) if root_members is not None else None
    for logger in _ALL_LOGGERS:
        logger.set_reduction_context(input_path, roots)


def clear_reduction_context() -> None:
    """Clear global reduction context."""
    for logger in _ALL_LOGGERS:
        logger.clear_reduction_context()


def configure_logging(log_level: str = "WARNING") -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.WARNING)

    for logger in _ALL_LOGGERS:
        logger.logger.setLevel(level)
