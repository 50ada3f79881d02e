"""Event dispatch for ticker callbacks.

Every notification the ticker produces has a kind from :class:`EventKind`.
Callers register any number of handlers per kind; :meth:`EventDispatcher.emit`
calls them synchronously, in registration order, in the emitting context.

Handler failures are contained: the exception is logged and counted, the
remaining handlers still run and later emits are unaffected.

Handler signatures
------------------
=============  ==================================
Kind           Arguments
=============  ==================================
ticks          ``list[Tick]``
connect        none
disconnect     reason (exception or str)
error          exception
close          reason (str)
reconnect      attempt (int), delay (float, s)
noreconnect    none
order_update   postback payload (dict)
message        raw binary frame (bytes)
=============  ==================================

Usage::

    dispatcher = EventDispatcher()

    @dispatcher.on("ticks")
    def on_ticks(ticks):
        ...

    dispatcher.emit(EventKind.TICKS, ticks)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


class EventKind(str, Enum):
    TICKS = "ticks"
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    ERROR = "error"
    CLOSE = "close"
    RECONNECT = "reconnect"
    NORECONNECT = "noreconnect"
    ORDER_UPDATE = "order_update"
    MESSAGE = "message"


class EventDispatcher:
    """Per-kind handler lists with isolated failures."""

    def __init__(self) -> None:
        self._handlers: dict[EventKind, list[Handler]] = {kind: [] for kind in EventKind}
        self._tasks: set[asyncio.Task] = set()
        self._emit_count: int = 0
        self._failure_count: int = 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def on(self, kind: EventKind | str, handler: Handler | None = None):
        """Register *handler* for *kind*.

        Without *handler* this returns a decorator.  Unknown kinds raise
        ``ValueError``.
        """
        kind = EventKind(kind)
        if handler is None:
            def decorator(fn: Handler) -> Handler:
                self._handlers[kind].append(fn)
                return fn
            return decorator
        self._handlers[kind].append(handler)
        return handler

    def off(self, kind: EventKind | str, handler: Handler) -> None:
        """Remove *handler*; unknown handlers are ignored."""
        try:
            self._handlers[EventKind(kind)].remove(handler)
        except ValueError:
            pass

    def handlers(self, kind: EventKind | str) -> list[Handler]:
        return list(self._handlers[EventKind(kind)])

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def emit(self, kind: EventKind, *args: Any) -> int:
        """Call every handler of *kind* with *args*.

        Returns the number of handlers that completed without raising.
        """
        self._emit_count += 1
        delivered = 0
        # Copy so handlers may (un)register during dispatch.
        for handler in list(self._handlers[kind]):
            try:
                result = handler(*args)
            except Exception:
                self._failure_count += 1
                logger.exception("%s handler %r failed", kind.value, handler)
                continue
            if inspect.isawaitable(result):
                self._schedule(kind, result)
            delivered += 1
        return delivered

    def _schedule(self, kind: EventKind, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop to run a coroutine handler on.
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self._failure_count += 1
            logger.error("%s handler returned an awaitable outside an event loop", kind.value)
            return
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._task_done(kind, t))

    def _task_done(self, kind: EventKind, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._failure_count += 1
            logger.error("%s async handler failed: %s", kind.value, exc, exc_info=exc)

    def stats(self) -> dict[str, int]:
        return {
            "emitted": self._emit_count,
            "handler_failures": self._failure_count,
            "pending_tasks": len(self._tasks),
        }
