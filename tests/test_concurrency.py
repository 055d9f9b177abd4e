import asyncio

import pytest

from toolrack.concurrency import Budget, BudgetGuard, ConcurrencyLimiter, create_limiter, normalize_concurrency


@pytest.mark.parametrize(
    ("value", "expected"),
    [(None, None), (0, None), (-3, None), (2.7, 2), (float("inf"), None), (True, None), ("4", None), (5, 5)],
)
def test_normalize_concurrency(value, expected) -> None:
    assert normalize_concurrency(value) == expected


def test_create_limiter_unbounded_returns_none() -> None:
    assert create_limiter(None) is None
    limiter = create_limiter(3)
    assert isinstance(limiter, ConcurrencyLimiter)
    assert limiter.limit == 3


def test_limiter_rejects_zero() -> None:
    with pytest.raises(ValueError):
        ConcurrencyLimiter(0)


@pytest.mark.asyncio
async def test_limit_one_runs_serially_in_submission_order() -> None:
    limiter = ConcurrencyLimiter(1)
    running = 0
    peak = 0
    order: list[int] = []

    async def job(n: int) -> int:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        order.append(n)
        await asyncio.sleep(0.001)
        running -= 1
        return n

    results = await asyncio.gather(*(limiter.run(lambda n=n: job(n)) for n in range(6)))

    assert results == list(range(6))
    assert order == list(range(6))
    assert peak == 1
    assert limiter.active == 0
    assert limiter.pending == 0


@pytest.mark.asyncio
async def test_limiter_releases_slot_on_failure() -> None:
    limiter = ConcurrencyLimiter(1)

    async def boom():
        raise RuntimeError("fail")

    async def ok():
        return "ok"

    with pytest.raises(RuntimeError):
        await limiter.run(boom)
    assert await limiter.run(ok) == "ok"
    assert limiter.active == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_leak_slot() -> None:
    limiter = ConcurrencyLimiter(1)
    gate = asyncio.Event()

    async def hold():
        await gate.wait()

    holder = asyncio.ensure_future(limiter.run(hold))
    await asyncio.sleep(0)
    waiter = asyncio.ensure_future(limiter.run(hold))
    await asyncio.sleep(0)
    assert limiter.pending == 1

    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    gate.set()
    await holder

    assert limiter.active == 0
    assert limiter.pending == 0


def test_budget_guard_counts_calls() -> None:
    guard = BudgetGuard(Budget(max_calls=2))
    assert guard.check() is None
    guard.record_call()
    guard.record_call()
    assert guard.calls == 2
    assert guard.check() == "Budget exceeded: max calls 2"


def test_budget_guard_duration_uses_clock() -> None:
    now = [10.0]
    guard = BudgetGuard(Budget(max_duration_ms=500), clock=lambda: now[0])
    assert guard.check() is None
    now[0] = 10.5
    assert guard.check() == "Budget exceeded: max duration 500ms"


def test_budget_validation_and_coerce() -> None:
    with pytest.raises(ValueError):
        Budget(max_calls=-1)
    assert Budget.coerce({"max_calls": 3}) == Budget(max_calls=3)
    assert Budget.coerce(None) is None
