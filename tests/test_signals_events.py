import asyncio

import pytest

from toolrack.errors import ToolCancelledError
from toolrack.events import EventHub
from toolrack.signals import AbortController, sleep_with_signal


def test_abort_signal_notifies_listeners_once() -> None:
    controller = AbortController()
    seen = []
    unsubscribe = controller.signal.add_listener(seen.append)
    controller.abort("stop")
    controller.abort("again")
    unsubscribe()

    assert controller.signal.aborted
    assert controller.signal.reason == "stop"
    assert seen == ["stop"]


def test_listener_added_after_abort_fires_immediately() -> None:
    controller = AbortController()
    controller.abort("late")
    seen = []
    controller.signal.add_listener(seen.append)
    assert seen == ["late"]
    with pytest.raises(ToolCancelledError, match="late"):
        controller.signal.throw_if_aborted()


@pytest.mark.asyncio
async def test_sleep_with_signal_raises_on_abort() -> None:
    controller = AbortController()
    loop = asyncio.get_running_loop()
    loop.call_later(0.01, controller.abort, RuntimeError("halted"))

    with pytest.raises(RuntimeError, match="halted"):
        await sleep_with_signal(5_000, controller.signal)


@pytest.mark.asyncio
async def test_sleep_with_signal_completes() -> None:
    controller = AbortController()
    await sleep_with_signal(1, controller.signal)
    assert not controller.signal.aborted


def test_event_hub_on_once_and_wildcard() -> None:
    hub = EventHub()
    seen: list[str] = []
    hub.on("ping", lambda event: seen.append(f"on:{event.detail['n']}"))
    hub.once("ping", lambda event: seen.append("once"))
    hub.on("*", lambda event: seen.append(f"any:{event.type}"))

    assert hub.dispatch("ping", {"n": 1})
    hub.dispatch("ping", {"n": 2})

    assert seen == ["on:1", "once", "any:ping", "on:2", "any:ping"]


def test_event_hub_listener_failure_is_logged(fake_logger) -> None:
    logger = fake_logger()
    hub = EventHub(logger=logger)
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    hub.on("x", broken)
    hub.on("x", seen.append)
    hub.dispatch("x")

    assert len(seen) == 1
    assert len(logger.exception_calls) == 1


def test_event_hub_complete_detaches_listeners() -> None:
    hub = EventHub()
    seen = []
    hub.on("x", seen.append)
    hub.complete()

    assert hub.completed
    assert hub.dispatch("x") is False
    assert seen == []
    assert hub.on("x", seen.append)() is None


@pytest.mark.asyncio
async def test_event_hub_async_iteration_ends_on_complete() -> None:
    hub = EventHub()
    collected = []

    async def consume():
        async for event in hub.events("tick"):
            collected.append(event.detail["n"])

    task = asyncio.create_task(consume())
    await asyncio.sleep(0)
    hub.dispatch("tick", {"n": 1})
    hub.dispatch("other", {"n": 99})
    hub.dispatch("tick", {"n": 2})
    hub.complete()
    await asyncio.wait_for(task, 1)

    assert collected == [1, 2]


@pytest.mark.asyncio
async def test_event_hub_drops_oldest_when_full() -> None:
    hub = EventHub()
    iterator = hub.events("tick", maxsize=2)
    first = asyncio.ensure_future(iterator.__anext__())
    await asyncio.sleep(0)
    for n in range(5):
        hub.dispatch("tick", {"n": n})
    received = [(await first).detail["n"]]
    received.append((await iterator.__anext__()).detail["n"])
    hub.complete()
    await iterator.aclose()

    assert received == [3, 4]
