"""Tests for quire.events module."""

from __future__ import annotations

import asyncio

from quire.events import Event, EventBus, EventType


def _dispatch(bus: EventBus, event: Event) -> bool:
    return asyncio.run(bus.dispatch(event))


class TestEventBus:
    def test_listeners_run_in_order(self):
        bus = EventBus()
        order: list[str] = []
        bus.add_listener(EventType.AFTER_BUILD, lambda e: order.append("a"))
        bus.add_listener("after_build", lambda e: order.append("b"))

        assert _dispatch(bus, Event(EventType.AFTER_BUILD)) is True
        assert order == ["a", "b"]

    def test_only_matching_type(self):
        bus = EventBus()
        calls: list[EventType] = []
        bus.add_listener(EventType.BEFORE_BUILD, lambda e: calls.append(e.type))
        _dispatch(bus, Event(EventType.AFTER_BUILD))
        assert calls == []

    def test_false_cancels(self):
        bus = EventBus()
        calls: list[str] = []
        bus.add_listener(EventType.BEFORE_UPDATE, lambda e: False)
        bus.add_listener(EventType.BEFORE_UPDATE, lambda e: calls.append("late"))

        assert _dispatch(bus, Event(EventType.BEFORE_UPDATE)) is False
        assert calls == []

    def test_none_does_not_cancel(self):
        bus = EventBus()
        bus.add_listener(EventType.BEFORE_UPDATE, lambda e: None)
        assert _dispatch(bus, Event(EventType.BEFORE_UPDATE)) is True

    def test_async_listener(self):
        bus = EventBus()

        async def veto(event: Event) -> bool:
            await asyncio.sleep(0)
            return "/quire.toml" not in event.files

        bus.add_listener(EventType.BEFORE_UPDATE, veto)
        assert _dispatch(bus, Event(EventType.BEFORE_UPDATE, files=frozenset({"/a.md"})))
        assert not _dispatch(bus, Event(EventType.BEFORE_UPDATE, files=frozenset({"/quire.toml"})))

    def test_listener_filters_pages_in_place(self):
        bus = EventBus()

        def keep_first(event: Event) -> None:
            event.pages[:] = event.pages[:1]

        bus.add_listener(EventType.BEFORE_SAVE, keep_first)
        event = Event(EventType.BEFORE_SAVE, pages=["a", "b"])  # type: ignore[list-item]
        _dispatch(bus, event)
        assert event.pages == ["a"]

    def test_remove_listener(self):
        bus = EventBus()
        calls: list[int] = []

        def listener(event: Event) -> None:
            calls.append(1)

        bus.add_listener(EventType.AFTER_BUILD, listener)
        bus.remove_listener(EventType.AFTER_BUILD, listener)
        bus.remove_listener(EventType.AFTER_BUILD, listener)
        _dispatch(bus, Event(EventType.AFTER_BUILD))
        assert calls == []
