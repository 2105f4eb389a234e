"""Tests for the session event bus."""

import asyncio

import pytest

from gxsession.services.session.events import EventBus, EventKind, event_topic


def test_topics() -> None:
    assert event_topic("battery_225", EventKind.INFO) == "battery_225_info"
    assert event_topic("battery_225", EventKind.READING) == "battery_225"


def test_emit_reaches_every_listener_in_order() -> None:
    bus = EventBus()
    seen = []
    bus.on("grid", lambda payload: seen.append(("a", payload)))
    bus.on("grid", lambda payload: seen.append(("b", payload)))

    assert bus.emit("grid", [b"\x00\x01"]) == 2
    assert seen == [("a", [b"\x00\x01"]), ("b", [b"\x00\x01"])]


def test_failing_listener_does_not_block_others() -> None:
    bus = EventBus()
    seen = []

    def broken(payload):
        raise RuntimeError("boom")

    bus.on("grid", broken)
    bus.on("grid", seen.append)

    bus.emit("grid", [])
    assert seen == [[]]


def test_off_and_remove_all() -> None:
    bus = EventBus()
    listener = lambda payload: None  # noqa: E731
    bus.on("grid", listener)
    bus.on("grid", print)

    bus.off("grid", listener)
    bus.off("grid", listener)
    assert bus.listener_count("grid") == 1

    assert bus.remove_all_listeners("grid") == 1
    assert bus.listener_count("grid") == 0
    assert bus.emit("grid", []) == 0


@pytest.mark.asyncio
async def test_async_listeners_are_scheduled_and_drained() -> None:
    bus = EventBus()
    seen = []

    async def slow(payload):
        await asyncio.sleep(0.01)
        seen.append(payload)

    async def broken(payload):
        raise RuntimeError("boom")

    bus.on("grid", slow)
    bus.on("grid", broken)
    bus.emit("grid", [b"\x12\x34"])
    assert seen == []

    await bus.drain()
    assert seen == [[b"\x12\x34"]]
