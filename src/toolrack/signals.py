"""Cooperative cancellation primitives.

An ``AbortController`` owns an ``AbortSignal``; handlers and combinators poll
``signal.aborted`` or subscribe with ``add_listener``. Aborting is one-shot.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from toolrack.errors import abort_error


class AbortSignal:
    def __init__(self) -> None:
        self._aborted = False
        self._reason: Any = None
        self._listeners: list[Callable[[Any], None]] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> Any:
        return self._reason

    def add_listener(self, listener: Callable[[Any], None]) -> Callable[[], None]:
        """Call ``listener(reason)`` on abort; returns an unsubscribe callable."""

        if self._aborted:
            listener(self._reason)
            return lambda: None
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def throw_if_aborted(self) -> None:
        if self._aborted:
            raise abort_error(self._reason)

    def _abort(self, reason: Any) -> None:
        if self._aborted:
            return
        self._aborted = True
        self._reason = reason
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener(reason)


class AbortController:
    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: Any = None) -> None:
        self.signal._abort(reason)


async def sleep_with_signal(delay_ms: float, signal: AbortSignal | None = None) -> None:
    """Sleep for ``delay_ms``; raise the abort reason as soon as the signal fires."""

    if signal is None:
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)
        return
    signal.throw_if_aborted()
    if delay_ms <= 0:
        return

    loop = asyncio.get_running_loop()
    aborted: asyncio.Future[Any] = loop.create_future()

    def _on_abort(reason: Any) -> None:
        if not aborted.done():
            aborted.set_result(reason)

    unsubscribe = signal.add_listener(_on_abort)
    try:
        await asyncio.wait({aborted}, timeout=delay_ms / 1000)
    finally:
        unsubscribe()
        if not aborted.done():
            aborted.cancel()
    signal.throw_if_aborted()


__all__ = ["AbortController", "AbortSignal", "sleep_with_signal"]
