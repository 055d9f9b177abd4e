"""Re-run a failing tool with fixed or exponential backoff."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from toolrack.combinators.base import call_tool, check_aborted, composed_tool, require_tool, resolve
from toolrack.errors import abort_error
from toolrack.schema import to_plain
from toolrack.signals import sleep_with_signal
from toolrack.tool import Tool
from toolrack.types import ToolContext

_log = logging.getLogger("toolrack.combinators")


class Backoff(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True, slots=True)
class RetryDetail:
    attempt: int
    error: BaseException
    context: ToolContext


RetryPredicate = Callable[[RetryDetail], bool | Awaitable[bool]]
RetryHook = Callable[[RetryDetail], None | Awaitable[None]]


def retry_delay(attempt: int, delay_ms: float, backoff: Backoff, max_delay_ms: float | None = None) -> float:
    if delay_ms <= 0:
        return 0.0
    multiplier = 2 ** (attempt - 1) if backoff is Backoff.EXPONENTIAL else 1
    delay = delay_ms * multiplier
    return delay if max_delay_ms is None else min(delay, max_delay_ms)


def retry(
    tool: Tool,
    *,
    attempts: int = 3,
    delay_ms: float = 0,
    backoff: Backoff | str = Backoff.FIXED,
    max_delay_ms: float | None = None,
    should_retry: RetryPredicate | None = None,
    on_retry: RetryHook | None = None,
) -> Tool:
    require_tool(tool, "retry")
    if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 1:
        raise ValueError("retry() expects attempts to be a positive integer")
    if delay_ms < 0:
        raise ValueError("retry() expects delay_ms to be at least 0")
    if max_delay_ms is not None and max_delay_ms < 0:
        raise ValueError("retry() expects max_delay_ms to be at least 0")
    mode = Backoff(backoff)

    async def run(params: Any, context: ToolContext) -> Any:
        value = to_plain(params)
        attempt = 0
        while True:
            attempt += 1
            check_aborted(context)
            try:
                return await call_tool(tool, value, context)
            except Exception as exc:
                signal = context.signal
                if signal is not None and signal.aborted:
                    raise abort_error(signal.reason) from exc
                if attempt >= attempts:
                    raise
                detail = RetryDetail(attempt=attempt, error=exc, context=context)
                if should_retry is not None and not await resolve(should_retry(detail)):
                    raise
                _log.debug("retrying %s after attempt %d: %s", tool.name, attempt, exc)
                if on_retry is not None:
                    await resolve(on_retry(detail))
                wait_ms = retry_delay(attempt, delay_ms, mode, max_delay_ms)
                if wait_ms > 0:
                    await sleep_with_signal(wait_ms, signal)

    return composed_tool(
        f"retry({tool.name})",
        f"Retry tool: {tool.description}",
        tool.schema,
        run,
        tags=tool.tags,
        metadata=tool.metadata,
    )


__all__ = ["Backoff", "RetryDetail", "retry", "retry_delay"]
