from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from toolrack.combinators.base import call_tool, composed_tool, require_tool, resolve
from toolrack.schema import to_plain
from toolrack.tool import Tool
from toolrack.types import ToolContext

TapEffect = Callable[[Any, ToolContext], None | Awaitable[None]]


def tap(tool: Tool, effect: TapEffect) -> Tool:
    """Run ``effect(output, context)`` after the tool and return the output unchanged.

    An exception from the effect fails the call.
    """

    require_tool(tool, "tap")
    if not callable(effect):
        raise TypeError("tap() expects a callable effect")

    async def run(params: Any, context: ToolContext) -> Any:
        result = await call_tool(tool, to_plain(params), context)
        await resolve(effect(result, context))
        return result

    return composed_tool(
        f"tap({tool.name})",
        f"Tap tool: {tool.description}",
        tool.schema,
        run,
        tags=tool.tags,
        metadata=tool.metadata,
    )


__all__ = ["TapEffect", "tap"]
