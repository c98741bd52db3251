"""Drop pages a predicate rejects before they are saved.

Programmatic only, since the predicate is a callable::

    site.use("filter_pages", {"fn": lambda page: page.url.startswith("/blog/")})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from quire.events import EventType
from quire.exceptions import PluginError

if TYPE_CHECKING:
    from quire.events import Event
    from quire.site import Site

__all__ = ["install"]

logger = logging.getLogger(__name__)


def install(site: Site, options: dict[str, Any]) -> None:
    predicate = options.get("fn")
    if not callable(predicate):
        raise PluginError("filter_pages requires a callable 'fn' option")

    def filter_pages(event: Event) -> None:
        kept = [page for page in event.pages if predicate(page)]
        dropped = len(event.pages) - len(kept)
        if dropped:
            logger.info("Filtered out %d page(s)", dropped)
        event.pages[:] = kept

    site.add_event_listener(EventType.BEFORE_SAVE, filter_pages)
