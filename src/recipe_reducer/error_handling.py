"""
Error handling for recipe-reducer.

Defines the reduction error taxonomy and a centralized error handler that
gives structured logging, error callbacks and error statistics to every
stage of the parse -> reduce -> serialize pipeline.
"""

import logging
import re
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional


class ErrorLevel(Enum):
    """Error severity levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorCategory(Enum):
    """Error categories for better classification."""

    PARSING = "PARSING"
    RESOLUTION = "RESOLUTION"
    SELECTION = "SELECTION"
    CONSISTENCY = "CONSISTENCY"
    SERIALIZATION = "SERIALIZATION"
    CONFIGURATION = "CONFIGURATION"
    FILESYSTEM = "FILESYSTEM"


class ErrorCode(Enum):
    """Stable, machine-readable identifiers for reduction failures."""

    MALFORMED_RECIPE = "E_MALFORMED_RECIPE"
    UNRESOLVED_DEPENDENCY = "E_UNRESOLVED_DEPENDENCY"
    UNKNOWN_MEMBER = "E_UNKNOWN_MEMBER"
    INTERNAL_CONSISTENCY = "E_INTERNAL_CONSISTENCY"
    SERIALIZATION = "E_SERIALIZATION"


class ReduceError(ValueError):
    """Base class for every failure of a recipe reduction.

    Carries a stable code, an optional hint and a context mapping that names
    the section, field or identity the failure is about.
    """

    code: ErrorCode = ErrorCode.MALFORMED_RECIPE
    category: ErrorCategory = ErrorCategory.PARSING

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.context: Dict[str, Any] = dict(context or {})

    def __str__(self) -> str:
        parts = [self.message]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        for key, value in self.context.items():
            if value in (None, "", [], ()):
                continue
            if isinstance(value, (list, tuple, set)):
                value = ", ".join(str(v) for v in value)
            parts.append(f"  {key}: {value}")
        return "\n".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the error to a dictionary for JSON output."""
        payload: Dict[str, Any] = {
            "code": self.code.value,
            "category": self.category.value,
            "message": self.message,
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class MalformedRecipe(ReduceError):
    """The recipe cannot be decoded into the expected shape."""

    code = ErrorCode.MALFORMED_RECIPE
    category = ErrorCategory.PARSING


class UnresolvedDependency(ReduceError):
    """A declared dependency has no resolved lock entry."""

    code = ErrorCode.UNRESOLVED_DEPENDENCY
    category = ErrorCategory.RESOLUTION


class UnknownMember(ReduceError):
    """The requested root member is not part of the workspace."""

    code = ErrorCode.UNKNOWN_MEMBER
    category = ErrorCategory.SELECTION

    def __init__(
        self,
        member: str,
        known_members: Iterable[str],
        *,
        hint: Optional[str] = None,
    ):
        self.member = member
        self.known_members = sorted(known_members)
        super().__init__(
            f"Unknown workspace member: {member!r}",
            hint=hint or "Pass one of the known workspace members",
            context={"member": member, "known_members": self.known_members},
        )


class InternalConsistency(ReduceError):
    """The reduced recipe references an entity that was pruned."""

    code = ErrorCode.INTERNAL_CONSISTENCY
    category = ErrorCategory.CONSISTENCY

    def __init__(self, message: str, dangling: Iterable[str]):
        self.dangling = sorted(dangling)
        super().__init__(
            message,
            hint="This is a bug in recipe-reducer, please report it with the input recipe",
            context={"dangling": self.dangling},
        )


class SerializationError(ReduceError):
    """The reduced recipe cannot be rendered."""

    code = ErrorCode.SERIALIZATION
    category = ErrorCategory.SERIALIZATION


@dataclass
class ErrorContext:
    """Structured error context information."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[Exception] = None
    traceback_info: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error context to dictionary for logging."""
        return {
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "module": self.module,
            "function": self.function,
            "details": self.details,
            "exception_type": type(self.exception).__name__ if self.exception else None,
            "exception_message": str(self.exception) if self.exception else None,
            "traceback": self.traceback_info,
            "suggestions": self.suggestions,
        }


class SecureLogger:
    """Logger that redacts credentials embedded in source URLs."""

    # git sources in a lock file may carry user:token@ pairs
    _sensitive_patterns = [
        (re.compile(r"(\b[a-z+]+://[^@\s/]+:)[^@\s/]+@", re.IGNORECASE), r"\1[REDACTED]@"),
        (re.compile(r'token["\s]*[:=]["\s]*([a-zA-Z0-9_\-+=/.]{8,})', re.IGNORECASE), 'token="[REDACTED]"'),
    ]

    def __init__(self, name: str, level: int = logging.WARNING):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def _sanitize_message(self, message: str) -> str:
        sanitized = message
        for pattern, replacement in self._sensitive_patterns:
            sanitized = pattern.sub(replacement, sanitized)
        return sanitized

    def _sanitize_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: self._sanitize_value(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._sanitize_value(v) for v in value]
        if isinstance(value, str):
            return self._sanitize_message(value)
        return value

    def log_error_context(self, context: ErrorContext):
        """
        Log error context with appropriate level.

        Args:
            context: Error context to log
        """
        log_data = {
            "category": context.category.value,
            "module": context.module,
            "function": context.function,
            "details": self._sanitize_value(context.details),
        }

        if context.exception:
            log_data["exception"] = type(context.exception).__name__

        if context.suggestions:
            log_data["suggestions"] = context.suggestions

        log_message = f"{self._sanitize_message(context.message)} | {log_data}"
        self.logger.log(getattr(logging, context.level.value), log_message)


# Error callback type
ErrorCallback = Callable[[ErrorContext], None]


class ErrorHandler:
    """
    Centralized error handler for consistent error management.

    Provides logging, callbacks, and structured error handling
    for library components.
    """

    def __init__(
        self,
        logger_name: str = "recipe_reducer",
        log_level: int = logging.WARNING,
        enable_callbacks: bool = True,
    ):
        self.logger = SecureLogger(logger_name, log_level)
        self.enable_callbacks = enable_callbacks
        self.error_callbacks: Dict[ErrorCategory, List[ErrorCallback]] = {}
        self.global_callbacks: List[ErrorCallback] = []
        self.error_stats: Dict[str, int] = {}

    def register_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ):
        """
        Register error callback.

        Args:
            callback: Function to call on errors
            category: Error category to filter, None for all errors
        """
        if not self.enable_callbacks:
            return

        if category is None:
            self.global_callbacks.append(callback)
        else:
            self.error_callbacks.setdefault(category, []).append(callback)

    def unregister_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ):
        """Remove a callback registered with register_callback."""
        callbacks = (
            self.global_callbacks
            if category is None
            else self.error_callbacks.get(category, [])
        )
        if callback in callbacks:
            callbacks.remove(callback)

    @property
    def log_level(self) -> int:
        return self.logger.logger.level

    def set_log_level(self, level: int):
        """Set the threshold of the handler's stderr log."""
        self.logger.logger.setLevel(level)

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ) -> ErrorContext:
        """
        Handle an error with structured logging and callbacks.

        Returns:
            ErrorContext: The created error context
        """
        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            traceback_info=traceback.format_exc() if exception else None,
            suggestions=suggestions or [],
        )

        stat_key = f"{category.value}_{level.value}"
        self.error_stats[stat_key] = self.error_stats.get(stat_key, 0) + 1

        self.logger.log_error_context(context)

        if self.enable_callbacks:
            for callback in self.error_callbacks.get(category, []):
                try:
                    callback(context)
                except Exception as cb_error:
                    # Don't let callback errors break the main flow
                    self.logger.logger.error(f"Error in callback: {cb_error}")

            for callback in self.global_callbacks:
                try:
                    callback(context)
                except Exception as cb_error:
                    self.logger.logger.error(f"Error in global callback: {cb_error}")

        return context

    def warning(
        self,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        **kwargs,
    ) -> ErrorContext:
        """Handle warning level error."""
        return self.handle_error(
            ErrorLevel.WARNING, category, message, module, function, **kwargs
        )

    def error(
        self,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        **kwargs,
    ) -> ErrorContext:
        """Handle error level error."""
        return self.handle_error(
            ErrorLevel.ERROR, category, message, module, function, **kwargs
        )

    def get_error_stats(self) -> Dict[str, int]:
        """Get error statistics."""
        return self.error_stats.copy()

    def reset_stats(self):
        """Reset error statistics."""
        self.error_stats.clear()


# Global error handler instance
_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """
    Get the global error handler instance.

    Returns:
        ErrorHandler: Global error handler
    """
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


_SUGGESTIONS = {
    ErrorCategory.PARSING: [
        "Check that the recipe was produced by `cargo chef prepare`",
        "Verify the recipe file is not truncated or hand-edited",
    ],
    ErrorCategory.RESOLUTION: [
        "Regenerate Cargo.lock with `cargo generate-lockfile`",
        "Re-run `cargo chef prepare` after updating the lock file",
    ],
    ErrorCategory.SELECTION: [
        "Check the member name against `recipe-reducer inspect`",
    ],
    ErrorCategory.CONSISTENCY: [
        "Report the input recipe so the closure computation can be fixed",
    ],
    ErrorCategory.SERIALIZATION: [
        "Report the input recipe so the serializer can be fixed",
    ],
}


def report_reduce_error(exc: ReduceError, module: str, function: str) -> ErrorContext:
    """
    Record a reduction failure with the global error handler.

    Consistency and serialization failures are engine defects and are logged
    as critical, every other failure as an error.

    Args:
        exc: The failure about to propagate
        module: Module name
        function: Function name
    """
    level = (
        ErrorLevel.CRITICAL
        if exc.category in (ErrorCategory.CONSISTENCY, ErrorCategory.SERIALIZATION)
        else ErrorLevel.ERROR
    )
    details = {"code": exc.code.value, **exc.context}
    return get_error_handler().handle_error(
        level,
        exc.category,
        exc.message,
        module,
        function,
        exception=exc,
        details=details,
        suggestions=list(_SUGGESTIONS.get(exc.category, [])),
    )


def log_parsing_error(
    message: str,
    module: str,
    function: str,
    section: Optional[str] = None,
    exception: Optional[Exception] = None,
):
    """
    Convenience function for logging non-fatal parsing problems.

    Args:
        message: Error message
        module: Module name
        function: Function name
        section: Recipe section being parsed
        exception: Optional exception
    """
    details = {}
    if section is not None:
        details["section"] = section

    get_error_handler().warning(
        ErrorCategory.PARSING,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=list(_SUGGESTIONS[ErrorCategory.PARSING]),
    )
