"""Tests for the EventBus."""

from __future__ import annotations

import asyncio
import gc
import warnings

import pytest

from corgea_ide.core.events import EventBus, EventKind


def test_handlers_run_in_subscription_order(bus):
    calls = []
    bus.subscribe(EventKind.SCAN_OUTPUT, lambda p: calls.append(("a", p)))
    bus.subscribe(EventKind.SCAN_OUTPUT, lambda p: calls.append(("b", p)))
    bus.publish(EventKind.SCAN_OUTPUT, "line")
    assert calls == [("a", "line"), ("b", "line")]


def test_only_matching_kind_is_delivered(bus):
    calls = []
    bus.subscribe(EventKind.LOGIN, calls.append)
    bus.publish(EventKind.LOGOUT)
    assert calls == []


def test_unsubscribe(bus):
    calls = []
    unsubscribe = bus.subscribe(EventKind.LOGIN, calls.append)
    unsubscribe()
    unsubscribe()
    bus.publish(EventKind.LOGIN)
    assert calls == []


def test_failing_handler_is_isolated(bus):
    calls = []

    def broken(_payload):
        raise RuntimeError("boom")

    bus.subscribe(EventKind.SCAN_ERROR, broken)
    bus.subscribe(EventKind.SCAN_ERROR, calls.append)
    bus.publish(EventKind.SCAN_ERROR, "state")
    assert calls == ["state"]


def test_handler_may_unsubscribe_itself_during_publish(bus):
    calls = []
    holder = {}

    def once(payload):
        calls.append(payload)
        holder["unsub"]()

    holder["unsub"] = bus.subscribe(EventKind.LOGIN, once)
    bus.publish(EventKind.LOGIN, 1)
    bus.publish(EventKind.LOGIN, 2)
    assert calls == [1]


@pytest.mark.asyncio
async def test_async_handler_scheduled_and_drained():
    bus = EventBus()
    seen = []

    async def handler(payload):
        await asyncio.sleep(0)
        seen.append(payload)

    bus.subscribe(EventKind.SCAN_COMPLETED, handler)
    bus.publish(EventKind.SCAN_COMPLETED, "done")
    assert seen == []
    await bus.drain()
    assert seen == ["done"]


@pytest.mark.asyncio
async def test_failing_async_handler_does_not_break_drain():
    bus = EventBus()

    async def handler(_payload):
        raise RuntimeError("boom")

    bus.subscribe(EventKind.LOGOUT, handler)
    bus.publish(EventKind.LOGOUT)
    await bus.drain()


def test_terminal_kinds():
    terminal = {kind for kind in EventKind if kind.is_terminal}
    assert terminal == {
        EventKind.SCAN_COMPLETED,
        EventKind.SCAN_CANCELLED,
        EventKind.SCAN_ERROR,
    }


def test_async_handler_without_loop_is_discarded_cleanly(bus):
    calls = []

    async def handler(payload):
        calls.append(("async", payload))

    bus.subscribe(EventKind.LOGIN, handler)
    bus.subscribe(EventKind.LOGIN, calls.append)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        bus.publish(EventKind.LOGIN, "x")
        gc.collect()

    assert calls == ["x"]
    assert not [w for w in caught if "never awaited" in str(w.message)]


def test_has_subscribers(bus):
    assert bus.has_subscribers(EventKind.SCAN_OUTPUT) is False
    unsubscribe = bus.subscribe(EventKind.SCAN_OUTPUT, lambda p: None)
    assert bus.has_subscribers(EventKind.SCAN_OUTPUT) is True
    unsubscribe()
    assert bus.has_subscribers(EventKind.SCAN_OUTPUT) is False
