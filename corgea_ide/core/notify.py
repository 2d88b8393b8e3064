"""User-facing notices and the error-handling wrapper built on them."""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")


class Notifier(Protocol):
    """Presentation collaborator that shows short messages to the user."""

    def info(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class LogNotifier:
    """Notifier that only writes to the log (headless use)."""

    def info(self, message: str) -> None:
        log.info("notice", level="info", message=message)

    def warning(self, message: str) -> None:
        log.warning("notice", level="warning", message=message)

    def error(self, message: str) -> None:
        log.error("notice", level="error", message=message)


def with_error_handling(
    notifier: Notifier,
    message: str | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Wrap an async callable: log the failure, tell the user, re-raise.

    *message* replaces the default ``"An error occurred: <exc>"`` notice.
    """

    def _wrap(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(fn)
        async def _wrapped(*args: Any, **kwargs: Any) -> T:
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                log.exception("error.unhandled", method=getattr(fn, "__qualname__", repr(fn)))
                notifier.error(message or f"An error occurred: {exc or 'Unknown error'}")
                raise

        return _wrapped

    return _wrap
