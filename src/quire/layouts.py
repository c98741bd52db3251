"""Layout resolution — embeds rendered pages into parent templates.

A page naming ``layout`` is rendered into that template with its body under
the ``content`` key; the layout's own front matter may name a further
layout. The chain is walked with an explicit loop and a visited set, so a
cycle fails the page instead of recursing forever.
"""

from __future__ import annotations

import logging
import posixpath
from typing import TYPE_CHECKING, Any

from quire.cascade import merge
from quire.exceptions import LayoutCycleError, LayoutNotFoundError, LoadError, PageError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from quire.formats import FormatRegistry
    from quire.loaders import Loaded
    from quire.renderer import Renderer

__all__ = ["LayoutResolver"]

logger = logging.getLogger(__name__)

# Keys a layout takes from its own front matter, never from the page
_LAYOUT_OWNED = frozenset({"layout", "templateEngine"})


class LayoutResolver:
    """Walks layout chains through the renderer.

    Args:
        root: Absolute source directory.
        includes: Site path of the includes directory (e.g. ``"/_includes"``).
        formats: Registry used to pick the loader of each layout file.
        renderer: Renderer used to evaluate layouts.
    """

    def __init__(
        self,
        root: Path,
        includes: str,
        formats: FormatRegistry,
        renderer: Renderer,
    ) -> None:
        self.root = root
        self.includes = "/" + includes.strip("/")
        self.formats = formats
        self.renderer = renderer
        self._cache: dict[str, Loaded] = {}

    def layout_path(self, name: str) -> str:
        """Site path of a layout; absolute names bypass the includes root."""
        if name.startswith("/"):
            return posixpath.normpath(name)
        return posixpath.normpath(posixpath.join(self.includes, name))

    def delete_cache(self, src: str | None = None) -> None:
        if src is None:
            self._cache.clear()
        else:
            self._cache.pop(src, None)

    def _load(self, src: str, page_src: str) -> Loaded:
        cached = self._cache.get(src)
        if cached is not None:
            return cached

        path = self.root / src.lstrip("/")
        if not path.is_file():
            raise LayoutNotFoundError(f"Layout not found: {src}", src=page_src, filename=src)

        fmt = self.formats.resolve(src)
        if fmt is None:
            raise LayoutNotFoundError(
                f"No format registered for layout {src}", src=page_src, filename=src
            )

        try:
            loaded = fmt.loader(path)
        except LoadError as e:
            e.src = page_src
            raise
        self._cache[src] = loaded
        return loaded

    async def apply(
        self,
        page_src: str,
        content: Any,
        data: Mapping[str, Any],
    ) -> tuple[Any, list[str]]:
        """Render ``content`` through the layout chain named by ``data``.

        Returns:
            The final content and the site paths of every layout used.

        Raises:
            LayoutCycleError: If a layout is visited twice in one chain.
            LayoutNotFoundError: If a named layout does not exist.
            RenderError: If a layout fails to evaluate.
        """
        layout = data.get("layout")
        visited: list[str] = []
        context: Mapping[str, Any] = data

        while layout:
            src = self.layout_path(str(layout))
            if src in visited:
                chain = " -> ".join([*visited, src])
                raise LayoutCycleError(f"Layout cycle: {chain}", src=page_src, filename=src)
            visited.append(src)

            loaded = self._load(src, page_src)
            layout_data = loaded.data
            inherited = {k: v for k, v in context.items() if k not in _LAYOUT_OWNED}
            context = merge(layout_data, inherited)
            context["content"] = content

            logger.debug("Rendering %s into layout %s", page_src, src)
            try:
                content = await self.renderer.render(loaded.content, context, src)
            except PageError as e:
                e.src = e.src or page_src
                raise
            layout = layout_data.get("layout")

        return content, visited
