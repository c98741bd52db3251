"""Lifecycle event bus for a site session."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    from quire.types import Page

__all__ = ["Event", "EventBus", "EventType"]

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    BEFORE_BUILD = "before_build"
    AFTER_RENDER = "after_render"
    BEFORE_SAVE = "before_save"
    AFTER_BUILD = "after_build"
    BEFORE_UPDATE = "before_update"
    AFTER_UPDATE = "after_update"


@dataclass
class Event:
    """Payload handed to listeners.

    ``files`` carries the changed-path set for update events; ``pages`` the
    pages of the current cycle (listeners may filter it in place).
    """

    type: EventType
    files: frozenset[str] = frozenset()
    pages: list[Page] = field(default_factory=list)


class EventBus:
    """Ordered listeners per event type.

    A listener returning ``False`` cancels the event; :meth:`dispatch`
    reports that to the caller, which decides what cancellation means
    (for ``before_update`` it is a request for a full restart).
    """

    def __init__(self) -> None:
        self._listeners: dict[EventType, list[Callable[[Event], Any]]] = {}

    def add_listener(self, event_type: EventType | str, listener: Callable[[Event], Any]) -> None:
        self._listeners.setdefault(EventType(event_type), []).append(listener)

    def remove_listener(
        self, event_type: EventType | str, listener: Callable[[Event], Any]
    ) -> None:
        listeners = self._listeners.get(EventType(event_type), [])
        if listener in listeners:
            listeners.remove(listener)

    async def dispatch(self, event: Event) -> bool:
        """Run listeners in registration order.

        Returns:
            ``False`` if any listener cancelled the event, else ``True``.
        """
        for listener in list(self._listeners.get(event.type, [])):
            result = listener(event)
            if inspect.isawaitable(result):
                result = await result
            if result is False:
                logger.debug("Event %s cancelled by %r", event.type.value, listener)
                return False
        return True
