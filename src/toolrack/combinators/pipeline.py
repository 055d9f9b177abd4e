"""Sequential chaining: ``pipe`` left to right, ``compose`` right to left."""

from __future__ import annotations

from typing import Any

from toolrack.combinators.base import call_tool, check_aborted, composed_tool, require_tools
from toolrack.errors import PipelineError
from toolrack.schema import to_plain
from toolrack.tool import Tool
from toolrack.types import ToolContext


def pipe(*tools: Tool) -> Tool:
    """Feed each tool's output into the next; the input schema is the first tool's."""

    steps = require_tools(tools, "pipe", minimum=2)
    names = [step.name for step in steps]

    async def run(params: Any, context: ToolContext) -> Any:
        value = to_plain(params)
        for index, step in enumerate(steps):
            check_aborted(context)
            context.dispatch(
                "step-start", {"step_index": index, "step_name": step.name, "input": value, "dry_run": context.dry_run}
            )
            try:
                value = await call_tool(step, value, context)
            except Exception as exc:
                context.dispatch(
                    "step-error",
                    {"step_index": index, "step_name": step.name, "error": exc, "dry_run": context.dry_run},
                )
                raise PipelineError(
                    f"Pipeline failed at step {index} ({step.name})",
                    step_index=index,
                    step_name=step.name,
                    original_error=exc,
                ) from exc
            context.dispatch(
                "step-complete",
                {"step_index": index, "step_name": step.name, "output": value, "dry_run": context.dry_run},
            )
        return value

    return composed_tool(
        f"pipe({', '.join(names)})",
        f"Composed pipeline: {' -> '.join(names)}",
        steps[0].schema,
        run,
    )


def compose(*tools: Tool) -> Tool:
    """``compose(c, b, a)`` is ``pipe(a, b, c)``."""

    return pipe(*reversed(tools))


__all__ = ["compose", "pipe"]
