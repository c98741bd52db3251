"""Dependency tracking for incremental rebuilds.

Each page records the files its output was derived from (data files,
layouts, included templates, bundled imports). The reverse index turns a
set of changed paths into the set of pages to rebuild. When a change to
an include or a component cannot be attributed, the tracker asks for a
full rebuild and says why.
"""

from __future__ import annotations

import fnmatch
import logging
import posixpath
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from quire.cascade import DataCascade

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

__all__ = ["DependencyTracker", "RebuildScope", "ScopeKind"]

logger = logging.getLogger(__name__)


class ScopeKind(str, Enum):
    PARTIAL = "partial"
    FULL = "full"
    RESTART = "restart"


@dataclass(frozen=True)
class RebuildScope:
    """What a set of changes requires.

    ``pages`` lists affected site paths for a partial rebuild; it may include
    paths that are not pages yet (new files) or no longer exist (deletions).
    """

    kind: ScopeKind
    pages: frozenset[str] = frozenset()
    reason: str = ""


def _in_dir(src: str, directory: str) -> bool:
    return directory == "/" or src == directory or src.startswith(directory.rstrip("/") + "/")


class DependencyTracker:
    """Forward and reverse dependency index over site paths.

    Args:
        includes: Site path of the includes directory.
        restart_on: Glob patterns (over site paths, no leading slash) whose
            change restarts the session.
        is_component: Whether a site path is a template that renders no page
            of its own (only reachable through other templates).
    """

    def __init__(
        self,
        includes: str = "/_includes",
        restart_on: Iterable[str] = (),
        *,
        is_component: Callable[[str], bool] | None = None,
    ) -> None:
        self.includes = "/" + includes.strip("/")
        self.restart_on = [p.lstrip("/") for p in restart_on]
        self.is_component = is_component
        self._forward: dict[str, frozenset[str]] = {}
        self._reverse: dict[str, set[str]] = {}

    def __contains__(self, src: str) -> bool:
        return src in self._forward

    def __len__(self) -> int:
        return len(self._forward)

    @property
    def pages(self) -> frozenset[str]:
        return frozenset(self._forward)

    def record(self, src: str, dependencies: Iterable[str] = ()) -> None:
        """Replace the dependency set of ``src``."""
        self.forget(src)
        deps = frozenset(d for d in dependencies if d != src)
        self._forward[src] = deps
        for dep in deps:
            self._reverse.setdefault(dep, set()).add(src)

    def forget(self, src: str) -> None:
        for dep in self._forward.pop(src, ()):
            dependents = self._reverse.get(dep)
            if dependents is not None:
                dependents.discard(src)
                if not dependents:
                    del self._reverse[dep]

    def reset(self) -> None:
        self._forward.clear()
        self._reverse.clear()

    def dependencies_of(self, src: str) -> frozenset[str]:
        return self._forward.get(src, frozenset())

    def dependents(self, path: str) -> frozenset[str]:
        return frozenset(self._reverse.get(path, ()))

    def _is_internal(self, path: str) -> bool:
        if _in_dir(path, self.includes):
            return True
        if self.is_component is not None and self.is_component(path):
            return True
        return any(part.startswith("_") for part in path.strip("/").split("/"))

    def scope(self, changed: Iterable[str]) -> RebuildScope:
        """Classify a batch of changed site paths."""
        changed = sorted({"/" + p.lstrip("/") for p in changed})
        affected: set[str] = set()

        for path in changed:
            if any(fnmatch.fnmatch(path.lstrip("/"), p) for p in self.restart_on):
                logger.info("Restart required: %s changed", path)
                return RebuildScope(ScopeKind.RESTART, frozenset(changed), f"{path} changed")

            dependents = self.dependents(path)
            affected.update(dependents)

            owner = DataCascade.data_owner(path)
            if owner is not None:
                affected.update(src for src in self._forward if _in_dir(src, owner))
                continue

            if path in self._forward:
                affected.add(path)
                continue

            if self._is_internal(path):
                if not dependents:
                    reason = f"untracked change to {path}"
                    logger.info("Full rebuild: %s", reason)
                    return RebuildScope(ScopeKind.FULL, reason=reason)
                continue

            # Unknown source outside internal paths: a new file or a removed one
            if not posixpath.basename(path).startswith("."):
                affected.add(path)

        logger.debug("Partial rebuild of %d path(s)", len(affected))
        return RebuildScope(ScopeKind.PARTIAL, frozenset(affected))
