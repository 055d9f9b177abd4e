from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from toolrack.combinators.base import call_tool, composed_tool, require_tool
from toolrack.schema import omit_keys, schema_keys, to_plain
from toolrack.tool import Tool
from toolrack.types import ToolContext


def bind(tool: Tool, bound: Mapping[str, Any], *, name: str | None = None, description: str | None = None) -> Tool:
    """Pre-fill some arguments; bound values win over caller-supplied ones."""

    require_tool(tool, "bind")
    keys = schema_keys(tool.schema)
    if not keys:
        raise TypeError("bind() expects a tool with an object schema")
    if not isinstance(bound, Mapping):
        raise TypeError("bind() expects a mapping of bound values")
    unknown = sorted(key for key in bound if key not in keys)
    if unknown:
        raise ValueError(f"bind() cannot bind unknown keys: {', '.join(unknown)}")
    values = dict(bound)

    async def run(params: Any, context: ToolContext) -> Any:
        supplied = to_plain(params)
        merged = {**(supplied if isinstance(supplied, Mapping) else {}), **values}
        return await call_tool(tool, merged, context)

    return composed_tool(
        name or f"bind({tool.name})",
        description or f"Bound tool: {tool.description}",
        omit_keys(tool.schema, frozenset(values)),
        run,
        tags=tool.tags,
        metadata=tool.metadata,
    )


__all__ = ["bind"]
