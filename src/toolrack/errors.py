"""Error taxonomy, exception types, and error normalization helpers."""

from __future__ import annotations

import errno
import json
import socket
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx
import openai

if TYPE_CHECKING:
    from toolrack.types import ToolResult


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    DENIED = "denied"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    INTERNAL = "internal"
    NOT_FOUND = "not-found"
    BUDGET_EXCEEDED = "budget-exceeded"


class ToolRuntimeError(Exception):
    """Base class for errors raised by the tool runtime."""


class ToolExecutionError(ToolRuntimeError):
    """Raised by ``invoke`` when a call settles with an error outcome."""

    def __init__(self, result: ToolResult) -> None:
        super().__init__(result.error or "Tool execution failed")
        self.result = result

    @property
    def category(self) -> ErrorCategory | None:
        return self.result.error_category


class ApprovalRequiredError(ToolExecutionError):
    """Raised by ``invoke`` when policy requires approval or input first."""

    def __init__(self, result: ToolResult) -> None:
        super().__init__(result)
        reason = result.action.reason if result.action is not None else None
        self.args = (reason or f"approval required for tool {result.tool_name}",)


class ToolNotFoundError(ToolRuntimeError):
    """Raised in fail-fast batch mode when a call names an unknown tool."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool not found: {name}")
        self.name = name


class BudgetExceededError(ToolRuntimeError):
    """Raised in fail-fast batch mode when the registry budget is exhausted."""


class ToolTimeoutError(ToolRuntimeError):
    """A handler did not settle within its timeout."""

    code = "TIMEOUT"

    def __init__(self, timeout_ms: float) -> None:
        super().__init__(f"Tool execution timed out after {_format_ms(timeout_ms)}ms")
        self.timeout_ms = timeout_ms


class ToolCancelledError(ToolRuntimeError):
    """A call or a composed step was aborted through its signal."""

    def __init__(self, reason: Any = None) -> None:
        super().__init__(cancellation_message(reason))
        self.reason = reason


class PipelineError(ToolRuntimeError):
    """A step of a ``pipe``/``compose`` chain failed."""

    def __init__(self, message: str, *, step_index: int, step_name: str, original_error: Any) -> None:
        super().__init__(message)
        self.step_index = step_index
        self.step_name = step_name
        self.original_error = original_error


@dataclass(frozen=True, slots=True)
class NormalizedError:
    message: str
    code: str | None = None


UNKNOWN_ERROR_MESSAGE = "Unknown error"


def normalize_error(error: Any, *, code: str | None = None) -> NormalizedError:
    """Reduce an arbitrary raised value to a ``(message, code)`` pair."""

    if isinstance(error, BaseException):
        resolved_code = code or getattr(error, "code", None)
        if not isinstance(resolved_code, str):
            name = type(error).__name__
            resolved_code = name if name != "Exception" else None
        return NormalizedError(message=str(error), code=resolved_code)
    if isinstance(error, str):
        return NormalizedError(message=error, code=code)
    try:
        message = json.dumps(error)
    except (TypeError, ValueError):
        message = UNKNOWN_ERROR_MESSAGE
    return NormalizedError(message=message, code=code)


def error_string(error: NormalizedError) -> str:
    if error.code:
        return f"{error.code}: {error.message}" if error.message else error.code
    return error.message


def cancellation_message(reason: Any) -> str:
    """Render an abort reason as a user-facing message."""

    if reason is None:
        return "Cancelled"
    if isinstance(reason, str):
        return reason or "Cancelled"
    if isinstance(reason, BaseException):
        return str(reason) or "Cancelled"
    try:
        return f"Cancelled: {json.dumps(reason, separators=(',', ':'))}"
    except (TypeError, ValueError):
        return "Cancelled"


def abort_error(reason: Any) -> BaseException:
    """Return the exception to raise for an abort reason."""

    if isinstance(reason, BaseException):
        return reason
    return ToolCancelledError(reason)


_TRANSIENT_ERRNOS = {
    errno.ETIMEDOUT,
    errno.ECONNRESET,
    errno.ECONNREFUSED,
    errno.ENETDOWN,
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
}

_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    TimeoutError,
    ConnectionError,
    ToolTimeoutError,
    httpx.TimeoutException,
    httpx.NetworkError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
)


def is_transient(error: Any) -> bool:
    """Return True when an error looks like a timeout, throttle, or network blip."""

    if isinstance(error, _TRANSIENT_TYPES):
        return True
    if isinstance(error, socket.gaierror) and error.errno == socket.EAI_AGAIN:
        return True
    if isinstance(error, OSError) and error.errno in _TRANSIENT_ERRNOS:
        return True
    if isinstance(error, BaseException):
        message = str(error).lower()
        return "timeout" in message or "timed out" in message or "rate limit" in message
    return False


def _format_ms(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


__all__ = [
    "ApprovalRequiredError",
    "BudgetExceededError",
    "ErrorCategory",
    "NormalizedError",
    "PipelineError",
    "ToolCancelledError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolRuntimeError",
    "ToolTimeoutError",
    "UNKNOWN_ERROR_MESSAGE",
    "abort_error",
    "cancellation_message",
    "error_string",
    "is_transient",
    "normalize_error",
]
