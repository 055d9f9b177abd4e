"""Concurrency limiting and call budgets."""

from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

T = TypeVar("T")


def normalize_concurrency(value: Any) -> int | None:
    """Return a positive integer limit, or None for unlimited."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    limit = math.floor(value)
    return limit if limit > 0 else None


class ConcurrencyLimiter:
    """Bound the number of in-flight tasks; waiters are served FIFO.

    A released slot is handed straight to the oldest waiter, so ``active``
    never drops below the limit while work is queued.
    """

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("concurrency limit must be at least 1")
        self.limit = limit
        self._active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def active(self) -> int:
        return self._active

    @property
    def pending(self) -> int:
        return len(self._waiters)

    async def run(self, task: Callable[[], Awaitable[T]]) -> T:
        await self._acquire()
        try:
            return await task()
        finally:
            self._release()

    async def _acquire(self) -> None:
        if self._active < self.limit and not self._waiters:
            self._active += 1
            return
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # slot was already handed over; pass it on
                self._release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._active -= 1


def create_limiter(limit: Any) -> ConcurrencyLimiter | None:
    normalized = normalize_concurrency(limit)
    return ConcurrencyLimiter(normalized) if normalized is not None else None


@dataclass(frozen=True, slots=True)
class Budget:
    max_calls: int | None = None
    max_duration_ms: float | None = None

    def __post_init__(self) -> None:
        if self.max_calls is not None and self.max_calls < 0:
            raise ValueError("max_calls must be at least 0")
        if self.max_duration_ms is not None and self.max_duration_ms < 0:
            raise ValueError("max_duration_ms must be at least 0")

    @classmethod
    def coerce(cls, value: Budget | Mapping[str, Any] | None) -> Budget | None:
        if value is None or isinstance(value, Budget):
            return value
        return cls(max_calls=value.get("max_calls"), max_duration_ms=value.get("max_duration_ms"))


class BudgetGuard:
    """Track calls and elapsed time against a registry-wide budget."""

    def __init__(self, budget: Budget, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.budget = budget
        self._clock = clock
        self._started = clock()
        self._calls = 0

    @property
    def calls(self) -> int:
        return self._calls

    @property
    def elapsed_ms(self) -> float:
        return (self._clock() - self._started) * 1000

    def check(self) -> str | None:
        """Return the reason the budget is exhausted, or None."""

        max_calls = self.budget.max_calls
        if max_calls is not None and self._calls >= max_calls:
            return f"Budget exceeded: max calls {max_calls}"
        max_duration = self.budget.max_duration_ms
        if max_duration is not None and self.elapsed_ms >= max_duration:
            return f"Budget exceeded: max duration {_format_number(max_duration)}ms"
        return None

    def record_call(self) -> None:
        self._calls += 1


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


__all__ = [
    "Budget",
    "BudgetGuard",
    "ConcurrencyLimiter",
    "create_limiter",
    "normalize_concurrency",
]
