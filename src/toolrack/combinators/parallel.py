from __future__ import annotations

import asyncio
from typing import Any

from toolrack.combinators.base import call_tool, composed_tool, require_tools
from toolrack.schema import to_plain
from toolrack.tool import Tool
from toolrack.types import ToolContext


def parallel(*tools: Tool) -> Tool:
    """Run every tool on the same input; results keep declaration order."""

    branches = require_tools(tools, "parallel", minimum=2)
    names = [branch.name for branch in branches]

    async def run(params: Any, context: ToolContext) -> list[Any]:
        value = to_plain(params)

        async def run_branch(index: int, branch: Tool) -> Any:
            context.dispatch("step-start", {"step_index": index, "step_name": branch.name, "input": value})
            try:
                output = await call_tool(branch, value, context)
            except Exception as exc:
                context.dispatch("step-error", {"step_index": index, "step_name": branch.name, "error": exc})
                raise
            context.dispatch("step-complete", {"step_index": index, "step_name": branch.name, "output": output})
            return output

        return list(await asyncio.gather(*(run_branch(index, branch) for index, branch in enumerate(branches))))

    return composed_tool(
        f"parallel({', '.join(names)})",
        f"Parallel tools: {' | '.join(names)}",
        branches[0].schema,
        run,
    )


__all__ = ["parallel"]
