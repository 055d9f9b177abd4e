"""Input and output mappers around an existing tool."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from toolrack.combinators.base import call_tool, composed_tool, require_tool, resolve
from toolrack.schema import PassthroughArguments, to_plain
from toolrack.tool import Tool
from toolrack.types import ToolContext

Mapper = Callable[[Any, ToolContext], Any | Awaitable[Any]]


def preprocess(tool: Tool, mapper: Mapper) -> Tool:
    """Accept any object, map it with ``mapper(input, context)``, then call the tool."""

    require_tool(tool, "preprocess")
    if not callable(mapper):
        raise TypeError("preprocess() expects a callable mapper")

    async def run(params: Any, context: ToolContext) -> Any:
        transformed = await resolve(mapper(to_plain(params), context))
        return await call_tool(tool, transformed, context)

    return composed_tool(
        f"preprocess({tool.name})",
        f"Preprocessed tool: {tool.description}",
        PassthroughArguments,
        run,
        tags=tool.tags,
        metadata=tool.metadata,
    )


def postprocess(tool: Tool, mapper: Mapper) -> Tool:
    """Call the tool, then return ``mapper(output, context)``."""

    require_tool(tool, "postprocess")
    if not callable(mapper):
        raise TypeError("postprocess() expects a callable mapper")

    async def run(params: Any, context: ToolContext) -> Any:
        result = await call_tool(tool, to_plain(params), context)
        return await resolve(mapper(result, context))

    return composed_tool(
        f"postprocess({tool.name})",
        f"Postprocessed tool: {tool.description}",
        tool.schema,
        run,
        tags=tool.tags,
        metadata=tool.metadata,
    )


__all__ = ["Mapper", "postprocess", "preprocess"]
