"""Markdown engine backed by markdown-it-py."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from markdown_it import MarkdownIt

from quire.loaders import text_loader
from quire.renderer import Engine

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from quire.renderer import HelperOptions
    from quire.site import Site

__all__ = ["MarkdownEngine", "install"]


class MarkdownEngine(Engine):
    """CommonMark with raw HTML allowed; keeps no per-file state."""

    def __init__(self, preset: str = "commonmark", *, html: bool = True) -> None:
        self.md = MarkdownIt(preset, {"html": html})

    async def render(
        self,
        content: Any,
        data: Mapping[str, Any],
        filename: str | None = None,
    ) -> str:
        return self.render_component(content, data, filename)

    def render_component(
        self,
        content: Any,
        data: Mapping[str, Any],
        filename: str | None = None,
    ) -> str:
        return self.md.render(str(content))

    def render_inline(self, content: str) -> str:
        return self.md.renderInline(content)

    def add_helper(self, name: str, fn: Callable[..., Any], options: HelperOptions) -> None:
        pass

    def delete_cache(self, filename: str | None = None) -> None:
        pass


def install(site: Site, options: dict[str, Any]) -> None:
    engine = MarkdownEngine(options.get("preset", "commonmark"), html=options.get("html", True))
    site.load_pages(
        options.get("extensions", [".md", ".markdown"]),
        text_loader,
        engine,
        page_sub_extension=options.get("page_sub_extension"),
    )

    def md_filter(text: str, inline: bool = False) -> str:
        return engine.render_inline(text) if inline else engine.md.render(text)

    site.filter("md", md_filter)
