"""Tool runtime: validated execution, policy, registry search, and composition."""

from __future__ import annotations

from .builtins import create_search_tool  # noqa: F401
from .combinators import (  # noqa: F401
    bind,
    compose,
    parallel,
    pipe,
    postprocess,
    preprocess,
    retry,
    tap,
    when,
)
from .concurrency import Budget, BudgetGuard, ConcurrencyLimiter, create_limiter  # noqa: F401
from .config import LogLevel, RuntimeSettings, load_settings, write_config  # noqa: F401
from .diagnostics import ValidationDiagnostics  # noqa: F401
from .errors import (  # noqa: F401
    ApprovalRequiredError,
    BudgetExceededError,
    ErrorCategory,
    PipelineError,
    ToolCancelledError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolRuntimeError,
    ToolTimeoutError,
    is_transient,
)
from .events import EventHub, ToolEvent  # noqa: F401
from .inspection import DetailLevel, RegistryInspection, ToolInspection  # noqa: F401
from .logging import configure_logger  # noqa: F401
from .policy import (  # noqa: F401
    ApprovalPolicy,
    DecisionStatus,
    PolicyAfterContext,
    PolicyContext,
    PolicyDecision,
    PolicyHooks,
)
from .registry import RegistryOptions, ToolRegistry, combine_registries, create_registry  # noqa: F401
from .search import (  # noqa: F401
    OpenAIEmbedder,
    SearchOptions,
    TextQuery,
    ToolMatch,
    ToolQuery,
    query_tools,
    search_tools,
)
from .signals import AbortController, AbortSignal  # noqa: F401
from .tool import Tool, ToolDefinition, ToolIdentity, create_tool, define_tool, lazy  # noqa: F401
from .types import (  # noqa: F401
    ErrorMode,
    ExecutionMode,
    OutputValidationMode,
    ToolCall,
    ToolContext,
    ToolOutcome,
    ToolResult,
    create_tool_call,
)
