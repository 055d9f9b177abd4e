"""Synchronous publish/subscribe hub used by tools and registries.

Listeners run inline during ``dispatch``; a failing listener is logged and the
remaining listeners still run. ``events()`` exposes the same stream as an
async iterator backed by a bounded queue.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

WILDCARD = "*"


@dataclass(frozen=True, slots=True)
class ToolEvent:
    type: str
    detail: Mapping[str, Any] = field(default_factory=dict)


Listener = Callable[[ToolEvent], None]

_END = object()


class EventHub:
    """Typed event channel with ``on``/``once``/``complete`` semantics."""

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._listeners: dict[str, list[Listener]] = {}
        self._completed = False
        self._end_callbacks: list[Callable[[], None]] = []
        self._logger = logger or logging.getLogger("toolrack.events")

    @property
    def completed(self) -> bool:
        return self._completed

    def on(self, type: str, listener: Listener) -> Callable[[], None]:
        """Subscribe ``listener`` to ``type`` (``"*"`` for every event)."""

        if self._completed:
            return lambda: None
        self._listeners.setdefault(type, []).append(listener)
        return lambda: self.off(type, listener)

    add_listener = on

    def once(self, type: str, listener: Listener) -> Callable[[], None]:
        def _wrapper(event: ToolEvent) -> None:
            unsubscribe()
            listener(event)

        unsubscribe = self.on(type, _wrapper)
        return unsubscribe

    def off(self, type: str, listener: Listener) -> None:
        listeners = self._listeners.get(type)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def dispatch(self, type: str, detail: Mapping[str, Any] | None = None) -> bool:
        """Deliver an event synchronously; returns True when someone listened."""

        if self._completed:
            return False
        event = ToolEvent(type=type, detail=dict(detail or {}))
        targets = list(self._listeners.get(type, ())) + list(self._listeners.get(WILDCARD, ()))
        for listener in targets:
            try:
                listener(event)
            except Exception:
                self._logger.exception("event listener failed for %s", type)
                continue
        return bool(targets)

    def complete(self) -> None:
        """Detach every listener and end all async iterators."""

        if self._completed:
            return
        self._completed = True
        self._listeners.clear()
        callbacks, self._end_callbacks = self._end_callbacks, []
        for callback in callbacks:
            callback()

    async def events(self, type: str = WILDCARD, *, maxsize: int = 1024) -> AsyncIterator[ToolEvent]:
        """Iterate events of ``type`` until the hub completes.

        When the consumer lags behind by ``maxsize`` events the oldest queued
        event is dropped.
        """

        queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        if self._completed:
            return

        def _push(item: Any) -> None:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(item)

        def _end() -> None:
            _push(_END)

        unsubscribe = self.on(type, _push)
        self._end_callbacks.append(_end)
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    return
                yield item
        finally:
            unsubscribe()
            if _end in self._end_callbacks:
                self._end_callbacks.remove(_end)


__all__ = ["EventHub", "Listener", "ToolEvent", "WILDCARD"]
