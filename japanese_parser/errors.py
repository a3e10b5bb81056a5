# ==== ERROR TAXONOMY AND TOOL ERROR RESPONSES ==== #

"""
Classified errors raised by the resilience layer and the Ichiran bridge.

Every error carries a stable machine-readable ``code`` so callers can tell
"engine unavailable" from "bad output" from "timed out". Errors propagate
unchanged through the circuit breaker and are rendered into tool responses
only at the dispatch edge by :func:`handle_tool_error`.
"""

import traceback
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from japanese_parser.observability.logging import get_logger


logger = get_logger(__name__)


# ==== FAILURE CLASSIFICATION ==== #


class FailureKind(Enum):
    """Failure modes of an engine invocation."""
    CONTAINER_NOT_FOUND = "container_not_found"
    COMMAND_FAILED = "command_failed"
    TIMED_OUT = "timed_out"
    EXECUTION_ERROR = "execution_error"


# ==== BASE ERROR ==== #


class ParserError(Exception):
    """Base class for all classified errors."""

    code = "PROCESSING_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Any] = None
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error for logging and responses."""
        return {"code": self.code, "message": self.message}


# ==== ENGINE INVOCATION ERRORS ==== #


class EngineError(ParserError):
    """Failure of an Ichiran engine invocation."""

    kind = FailureKind.EXECUTION_ERROR


class ContainerNotFoundError(EngineError):
    """The container the engine runs inside does not exist or is stopped."""

    code = "ICHIRAN_UNAVAILABLE"
    kind = FailureKind.CONTAINER_NOT_FOUND


class CommandFailedError(EngineError):
    """The engine process exited with a non-zero status."""

    code = "COMMAND_FAILED"
    kind = FailureKind.COMMAND_FAILED

    @property
    def exit_code(self) -> Optional[int]:
        if isinstance(self.details, dict):
            return self.details.get("exit_code")
        return None


class TimedOutError(EngineError):
    """An operation did not finish within its time budget."""

    code = "ICHIRAN_TIMEOUT"
    kind = FailureKind.TIMED_OUT

    label: Optional[str] = None
    timeout_ms: Optional[float] = None

    @classmethod
    def for_operation(cls, label: str, timeout_ms: float) -> "TimedOutError":
        """Build the error raised when ``label`` overran ``timeout_ms``."""
        error = cls(
            f"Operation '{label}' timed out after {_format_ms(timeout_ms)}ms",
            details={"label": label, "timeout_ms": timeout_ms},
        )
        error.label = label
        error.timeout_ms = timeout_ms
        return error


class ExecutionError(EngineError):
    """Any other failure while running the engine; ``details`` keeps the cause."""

    code = "PROCESSING_ERROR"
    kind = FailureKind.EXECUTION_ERROR


ENGINE_ERRORS = {
    FailureKind.CONTAINER_NOT_FOUND: ContainerNotFoundError,
    FailureKind.COMMAND_FAILED: CommandFailedError,
    FailureKind.TIMED_OUT: TimedOutError,
    FailureKind.EXECUTION_ERROR: ExecutionError,
}


# ==== OUTPUT AND ADMISSION ERRORS ==== #


class DecodeError(ParserError):
    """Engine output could not be decoded."""

    code = "DECODE_ERROR"


class RateLimitedError(ParserError):
    """The client exceeded its request budget for the current window."""

    code = "RATE_LIMITED"


class BreakerOpenError(ParserError):
    """The circuit breaker is open and the call was short-circuited."""

    code = "BREAKER_OPEN"


class InvalidInputError(ParserError):
    code = "INVALID_INPUT"


class UnknownToolError(ParserError):
    code = "UNKNOWN_TOOL"


def _format_ms(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


# ==== TOOL RESPONSES ==== #


class TextContent(BaseModel):
    """Single text block of a tool response."""
    type: Literal["text"] = "text"
    text: str


class ToolResponse(BaseModel):
    """Success or error payload handed back to the dispatch surface."""
    content: List[TextContent] = Field(default_factory=list)
    is_error: bool = False

    @classmethod
    def text(cls, text: str, is_error: bool = False) -> "ToolResponse":
        return cls(content=[TextContent(text=text)], is_error=is_error)


def handle_tool_error(
    error: object,
    context: Optional[str] = None,
    development: Optional[bool] = None
) -> ToolResponse:
    """
    Convert an error raised by a tool into an error response.

    Classified errors surface their code and message. Anything else is
    reported generically; the exception text and traceback are included
    only in a development environment.

    Args:
        error: Error raised while serving the tool call
        context: Tool name or operation label for the log entry
        development: Override for the development flag, defaults to settings

    Returns:
        ToolResponse: Error response with ``is_error`` set
    """
    if development is None:
        from japanese_parser.settings import get_settings
        development = get_settings().is_development

    logger.error(
        f"Tool error{f' in {context}' if context else ''}: {error}",
        context=context,
        error_type=type(error).__name__,
        error_code=getattr(error, "code", None),
    )

    if isinstance(error, ParserError):
        return ToolResponse.text(
            f"Ichiran Error [{error.code}]: {error.message}", is_error=True
        )

    if isinstance(error, Exception):
        if development:
            stack = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
            message = f"Internal Error: {error}\n{stack}"
        else:
            message = "An internal error occurred. Please try again."
        return ToolResponse.text(message, is_error=True)

    return ToolResponse.text("An unknown error occurred. Please try again.", is_error=True)
