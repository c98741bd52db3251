"""Watch bridge: filesystem events → debounced incremental rebuilds.

watchdog's observer runs on its own thread; events cross into the asyncio
loop with ``call_soon_threadsafe``. Changes are batched within the debounce
window and only one rebuild runs at a time. Anything arriving while a
rebuild is in flight is coalesced into the next batch.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import os
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from quire.exceptions import QuireError, RestartRequired

if TYPE_CHECKING:
    from collections.abc import Callable

    from watchdog.events import FileSystemEvent

    from quire.site import Site
    from quire.types import BuildSummary

__all__ = ["ChangeHandler", "WatchOutcome", "Watcher"]

logger = logging.getLogger(__name__)


class WatchOutcome(str, Enum):
    RESTART = "restart"
    STOPPED = "stopped"


class ChangeHandler(FileSystemEventHandler):
    """Forwards file events (never directories) to a callback."""

    def __init__(self, notify: Callable[[Path], None]) -> None:
        self.notify = notify

    def handle(self, path: bytes | str, is_directory: bool) -> None:
        if not is_directory:
            self.notify(Path(os.fsdecode(path)))

    def on_modified(self, event: FileSystemEvent) -> None:
        self.handle(event.src_path, event.is_directory)

    def on_created(self, event: FileSystemEvent) -> None:
        self.handle(event.src_path, event.is_directory)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self.handle(event.src_path, event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        self.handle(event.src_path, event.is_directory)
        self.handle(event.dest_path, event.is_directory)


class Watcher:
    """Runs ``site.update`` for each debounced batch of changes.

    Usage::

        outcome = await Watcher(site, on_rebuild=report).run()
        if outcome is WatchOutcome.RESTART:
            ...  # rebuild the Site from scratch

    Args:
        site: The session to update.
        debounce_ms: Batch window; defaults to ``[watch] debounce_ms``.
        on_rebuild: Called with each cycle's summary.
        observer_factory: Builds the watchdog observer (swappable in tests).
    """

    def __init__(
        self,
        site: Site,
        *,
        debounce_ms: int | None = None,
        on_rebuild: Callable[[BuildSummary], Any] | None = None,
        observer_factory: Callable[[], Any] = Observer,
    ) -> None:
        self.site = site
        ms = site.config.watch.debounce_ms if debounce_ms is None else debounce_ms
        self.debounce = ms / 1000
        self.on_rebuild = on_rebuild
        self.observer_factory = observer_factory
        self.rebuilds = 0

        self._pending: set[Path] = set()
        self._wakeup = asyncio.Event()
        self._stopped = False
        self._loop: asyncio.AbstractEventLoop | None = None

    def is_ignored(self, path: Path) -> bool:
        path = path.resolve()
        site = self.site
        if path.is_relative_to(site.dest_dir) or path.is_relative_to(site.state_dir.resolve()):
            return True
        try:
            rel = path.relative_to(site.root).as_posix()
        except ValueError:
            return True
        return any(fnmatch.fnmatch(rel, pattern) for pattern in site.config.watch.ignore)

    def notify(self, path: Path) -> None:
        """Queue a changed path; safe to call from any thread."""
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._enqueue, path)

    def _enqueue(self, path: Path) -> None:
        if self.is_ignored(path):
            return
        logger.debug("Change detected: %s", path)
        self._pending.add(path)
        self._wakeup.set()

    def stop(self) -> None:
        """Ask the loop to finish after the current rebuild."""
        if self._loop is None:
            self._stopped = True
            self._wakeup.set()
            return
        self._loop.call_soon_threadsafe(self._request_stop)

    def _request_stop(self) -> None:
        self._stopped = True
        self._wakeup.set()

    async def run(self) -> WatchOutcome:
        self._loop = asyncio.get_running_loop()
        observer = self.observer_factory()
        observer.schedule(ChangeHandler(self.notify), str(self.site.root), recursive=True)
        observer.start()
        logger.info("Watching %s", self.site.root)
        try:
            return await self._serve()
        finally:
            observer.stop()
            observer.join()
            self._loop = None

    async def _serve(self) -> WatchOutcome:
        while True:
            await self._wakeup.wait()
            if self._stopped:
                return WatchOutcome.STOPPED

            # Keep extending the window while events keep arriving
            while True:
                self._wakeup.clear()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), self.debounce)
                except TimeoutError:
                    break
                if self._stopped:
                    return WatchOutcome.STOPPED

            batch, self._pending = self._pending, set()
            if not batch:
                continue
            if await self._rebuild(batch):
                return WatchOutcome.RESTART

    async def _rebuild(self, batch: set[Path]) -> bool:
        """Run one update; ``True`` when a restart was requested."""
        logger.info("Rebuilding after %d change(s)", len(batch))
        try:
            summary = await self.site.update(sorted(batch))
        except RestartRequired as e:
            logger.info("Restarting: %s", e)
            return True
        except QuireError as e:
            logger.error("Rebuild failed: %s", e)
            return False
        except Exception:
            logger.exception("Rebuild failed unexpectedly")
            return False

        self.rebuilds += 1
        if self.on_rebuild is not None:
            self.on_rebuild(summary)
        return False
