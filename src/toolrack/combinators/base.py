"""Shared plumbing for tools built out of other tools."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

from pydantic import BaseModel

from toolrack.errors import abort_error
from toolrack.tool import Tool, define_tool
from toolrack.types import ToolContext

Run = Callable[[Any, ToolContext], Awaitable[Any]]


def require_tool(value: Any, combinator: str) -> Tool:
    if not isinstance(value, Tool):
        raise TypeError(f"{combinator}() expects Tool handles, got {type(value).__name__}")
    return value


def require_tools(values: Iterable[Any], combinator: str, *, minimum: int = 1) -> list[Tool]:
    tools = [require_tool(value, combinator) for value in values]
    if len(tools) < minimum:
        raise ValueError(f"{combinator}() requires at least {minimum} tools")
    return tools


async def call_tool(tool: Tool, params: Any, context: ToolContext) -> Any:
    """Invoke ``tool`` with the caller's signal, timeout, and dry-run flag."""

    return await tool.invoke(params, signal=context.signal, timeout_ms=context.timeout_ms, dry_run=context.dry_run)


async def resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def check_aborted(context: ToolContext) -> None:
    signal = context.signal
    if signal is not None and signal.aborted:
        raise abort_error(signal.reason)


def composed_tool(
    name: str,
    description: str,
    schema: type[BaseModel],
    run: Run,
    *,
    tags: Iterable[str] = (),
    metadata: Mapping[str, Any] | None = None,
) -> Tool:
    """Wrap ``run`` as a Tool; the same callable serves real and dry runs."""

    definition = define_tool(name, description=description, schema=schema, tags=tags, metadata=metadata)
    return Tool(definition, run, dry_run=run)


__all__ = ["Run", "call_tool", "check_aborted", "composed_tool", "require_tool", "require_tools", "resolve"]
