"""Process-wide publish/subscribe hub between the engines and presentation."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from enum import Enum
from typing import Any

import structlog

log = structlog.get_logger(__name__)


class EventKind(str, Enum):
    SCAN_STARTED = "scan.started"
    SCAN_PROGRESS = "scan.progress"
    SCAN_OUTPUT = "scan.output"
    SCAN_COMPLETED = "scan.completed"
    SCAN_CANCELLED = "scan.cancelled"
    SCAN_ERROR = "scan.error"
    LOGIN = "internal.login"
    LOGOUT = "internal.logout"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_KINDS


_TERMINAL_KINDS = frozenset(
    {EventKind.SCAN_COMPLETED, EventKind.SCAN_CANCELLED, EventKind.SCAN_ERROR}
)

# scan.* events carry a ScanState snapshot; internal.* events carry None.
Handler = Callable[[Any], Any]


class EventBus:
    """Typed fan-out of events to subscribed handlers.

    Handlers run synchronously in subscription order. A handler returning an
    awaitable is scheduled on the running loop; without one it is discarded
    and logged as a failure. Handler failures never reach the publisher.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventKind, list[Handler]] = {kind: [] for kind in EventKind}
        self._tasks: set[asyncio.Task[Any]] = set()

    def subscribe(self, kind: EventKind, handler: Handler) -> Callable[[], None]:
        """Register *handler* for *kind*; returns a callable that unsubscribes it."""
        self._handlers[kind].append(handler)

        def _unsubscribe() -> None:
            try:
                self._handlers[kind].remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    def has_subscribers(self, kind: EventKind) -> bool:
        return bool(self._handlers[kind])

    def publish(self, kind: EventKind, payload: Any = None) -> None:
        for handler in list(self._handlers[kind]):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    self._schedule(kind, result)
            except Exception:
                log.exception("events.handler_failed", event=kind.value)

    def _schedule(self, kind: EventKind, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no running loop: the handler cannot run, discard it
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                log.error(
                    "events.handler_failed",
                    event=kind.value,
                    error=str(t.exception()),
                )

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
