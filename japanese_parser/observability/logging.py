# ==== STRUCTURED LOGGING WITH LOGURU ==== #

"""
Structured logging with loguru for the Japanese parser.

Log records are serialized as JSON to stderr; stdout is left untouched because
the tool transport in front of this service speaks over it. Standard library
logging is intercepted and routed through loguru, and OpenTelemetry trace
identifiers are attached to every record emitted inside a span.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger
from opentelemetry.instrumentation.logging import LoggingInstrumentor


class InterceptHandler(logging.Handler):
    """Route standard library log records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        # Get corresponding Loguru level if it exists
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def init_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    """Initialize structured logging with loguru.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Optional directory for rotated JSON log files
    """
    # Remove default loguru handler
    logger.remove()

    logger.add(
        sys.stderr,
        format="{message}",
        serialize=True,
        level=level.upper(),
        enqueue=True,
        colorize=False,
        backtrace=True,
        diagnose=False,
    )

    if log_dir:
        logs_path = Path(log_dir)
        logs_path.mkdir(parents=True, exist_ok=True)

        logger.add(
            logs_path / "japanese_parser_{time:YYYY-MM-DD}.log",
            rotation="50 MB",
            retention="14 days",
            compression="gz",
            serialize=True,
            level="DEBUG",
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    # Replace standard logging handlers
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    try:
        LoggingInstrumentor().instrument(set_logging_format=False)
    except Exception as e:
        logger.warning(f"Failed to setup OpenTelemetry logging: {e}")

    logger.info("Structured logging initialized", level=level)


class ContextualLogger:
    """Loguru logger with automatic context injection.

    Binds the logger name, caller-supplied fields and the current
    OpenTelemetry trace and span identifiers to every record.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logger.bind(logger_name=name)

    def _add_context(self, extra: Dict[str, Any] | None = None) -> Dict[str, Any]:
        context: Dict[str, Any] = {"logger_name": self.name}

        if extra:
            context.update(extra)

        try:
            from opentelemetry import trace
            span = trace.get_current_span()
            if span and span.is_recording():
                span_context = span.get_span_context()
                if span_context.is_valid:
                    context['trace_id'] = format(span_context.trace_id, '032x')
                    context['span_id'] = format(span_context.span_id, '016x')
        except ImportError:
            pass

        return context

    def debug(self, msg: str, **kwargs: Any) -> None:
        self.logger.bind(**self._add_context(kwargs)).debug(msg)

    def info(self, msg: str, **kwargs: Any) -> None:
        self.logger.bind(**self._add_context(kwargs)).info(msg)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self.logger.bind(**self._add_context(kwargs)).warning(msg)

    def error(self, msg: str, **kwargs: Any) -> None:
        self.logger.bind(**self._add_context(kwargs)).error(msg)


# ==== LOGGING UTILITIES ==== #

def get_logger(name: str) -> ContextualLogger:
    """Get a contextual logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        ContextualLogger instance
    """
    return ContextualLogger(name)


def log_performance(operation: str, duration: float, success: bool, **context: Any) -> None:
    """Log timing of a single operation.

    Args:
        operation: Name of the operation
        duration: Duration in seconds
        success: Whether the operation succeeded
        **context: Additional context fields
    """
    perf_logger = logger.bind(
        operation=operation,
        duration_ms=round(duration * 1000, 1),
        status="SUCCESS" if success else "FAILURE",
        performance_log=True,
        **context
    )

    if duration > 10.0:
        perf_logger.warning(f"Slow operation detected: {operation}")
    else:
        perf_logger.debug(f"Operation completed: {operation}")
