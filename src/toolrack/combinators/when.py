from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from toolrack.combinators.base import call_tool, composed_tool, require_tool, resolve
from toolrack.schema import to_plain
from toolrack.tool import Tool
from toolrack.types import ToolContext

WhenPredicate = Callable[[Any, ToolContext], bool | Awaitable[bool]]


def when(predicate: WhenPredicate, when_true: Tool, when_false: Tool | None = None) -> Tool:
    """Branch on ``predicate(input, context)``; without an else branch the input passes through."""

    require_tool(when_true, "when")
    if when_false is not None:
        require_tool(when_false, "when")
    if not callable(predicate):
        raise TypeError("when() expects a callable predicate")

    async def run(params: Any, context: ToolContext) -> Any:
        value = to_plain(params)
        if await resolve(predicate(value, context)):
            return await call_tool(when_true, value, context)
        if when_false is not None:
            return await call_tool(when_false, value, context)
        return value

    if when_false is not None:
        name = f"when({when_true.name}, {when_false.name})"
        description = f"Conditional tool: {when_true.name} or {when_false.name}"
    else:
        name = f"when({when_true.name})"
        description = f"Conditional tool: {when_true.name}"
    return composed_tool(name, description, when_true.schema, run)


__all__ = ["WhenPredicate", "when"]
