"""Call, result, and context types shared across the runtime."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from toolrack.errors import ErrorCategory

if TYPE_CHECKING:
    from toolrack.signals import AbortSignal
    from toolrack.tool import ToolDefinition


class ToolOutcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    ACTION_REQUIRED = "action_required"


class OutputValidationMode(str, Enum):
    REPORT = "report"
    THROW = "throw"


class ExecutionMode(str, Enum):
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class ErrorMode(str, Enum):
    COLLECT = "collect"
    FAIL_FAST = "fail_fast"


@dataclass(frozen=True, slots=True)
class ToolCall:
    id: str
    name: str
    arguments: Any = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("tool call name must be a non-empty string")


def create_tool_call(name: str, arguments: Any = None, id: str | None = None) -> ToolCall:
    """Build a ToolCall, generating an id when none is supplied."""

    return ToolCall(id=id or f"call_{uuid.uuid4().hex}", name=name, arguments=arguments)


def coerce_tool_call(value: ToolCall | Mapping[str, Any]) -> ToolCall:
    if isinstance(value, ToolCall):
        return value
    if isinstance(value, Mapping):
        name = value.get("name")
        if not isinstance(name, str):
            raise TypeError("tool call mapping requires a string 'name'")
        return create_tool_call(name, value.get("arguments"), value.get("id"))
    raise TypeError(f"expected ToolCall or mapping, got {type(value).__name__}")


@dataclass(frozen=True, slots=True)
class OutputValidation:
    success: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ActionRequest:
    type: str
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class ToolResult:
    call_id: str
    tool_name: str
    outcome: ToolOutcome
    content: Any = None
    result: Any = None
    error: str | None = None
    error_category: ErrorCategory | None = None
    retryable: bool | None = None
    issues: tuple[Mapping[str, Any], ...] | None = None
    input_digest: str | None = None
    output_digest: str | None = None
    output_validation: OutputValidation | None = None
    dry_run: bool = False
    action: ActionRequest | None = None

    @property
    def tool_call_id(self) -> str:
        return self.call_id

    @property
    def ok(self) -> bool:
        return self.outcome is ToolOutcome.SUCCESS


@dataclass(frozen=True, slots=True)
class ToolCallMeta:
    tool_name: str
    call_id: str | None


@dataclass(frozen=True, slots=True)
class ToolContext:
    """Runtime context handed to every handler as its second argument."""

    dispatch: Callable[..., bool]
    meta: ToolCallMeta
    tool_call: ToolCall
    definition: ToolDefinition
    signal: AbortSignal | None = None
    timeout_ms: float | None = None
    dry_run: bool = False
    extras: Mapping[str, Any] = field(default_factory=dict)


__all__ = [
    "ActionRequest",
    "ErrorMode",
    "ExecutionMode",
    "OutputValidation",
    "OutputValidationMode",
    "ToolCall",
    "ToolCallMeta",
    "ToolContext",
    "ToolOutcome",
    "ToolResult",
    "coerce_tool_call",
    "create_tool_call",
]
