"""Tests for quire.layouts module — layout chains and cycle detection."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from quire.exceptions import LayoutCycleError, LayoutNotFoundError, RenderError
from quire.formats import Format, FormatRegistry
from quire.layouts import LayoutResolver
from quire.plugins.jinja import JinjaEngine
from quire.renderer import Renderer

if TYPE_CHECKING:
    from pathlib import Path


def _resolver(src: Path) -> LayoutResolver:
    formats = FormatRegistry()
    engine = JinjaEngine([src / "_includes", src])
    formats.register(Format((".jinja",), engine=engine, includes="/_includes"))
    renderer = Renderer(formats)
    renderer.add_engine(engine)
    return LayoutResolver(src, "/_includes", formats, renderer)


def _apply(resolver: LayoutResolver, data: dict, content: str = "body") -> tuple[str, list[str]]:
    return asyncio.run(resolver.apply("/page.md", content, data))


class TestLayoutChain:
    def test_no_layout_returns_content(self, write_files):
        resolver = _resolver(write_files({}))
        assert _apply(resolver, {}) == ("body", [])

    def test_single_layout(self, write_files):
        src = write_files({"_includes/base.jinja": "<main>{{ content }}</main>"})
        content, used = _apply(_resolver(src), {"layout": "base.jinja"})
        assert content == "<main>body</main>"
        assert used == ["/_includes/base.jinja"]

    def test_nested_layouts(self, write_files):
        src = write_files(
            {
                "_includes/post.jinja": "---\nlayout: base.jinja\n---\n<article>{{ content }}</article>",
                "_includes/base.jinja": "<html>{{ content }}</html>",
            }
        )
        content, used = _apply(_resolver(src), {"layout": "post.jinja"})
        assert content == "<html><article>body</article></html>"
        assert used == ["/_includes/post.jinja", "/_includes/base.jinja"]

    def test_page_data_visible_in_layout(self, write_files):
        src = write_files({"_includes/base.jinja": "<title>{{ title }}</title>{{ content }}"})
        content, _ = _apply(_resolver(src), {"layout": "base.jinja", "title": "Hi"})
        assert content == "<title>Hi</title>body"

    def test_page_data_overrides_layout_defaults(self, write_files):
        src = write_files(
            {"_includes/base.jinja": "---\ntitle: Default\n---\n{{ title }}|{{ content }}"}
        )
        assert _apply(_resolver(src), {"layout": "base.jinja"})[0] == "Default|body"
        assert _apply(_resolver(src), {"layout": "base.jinja", "title": "Own"})[0] == "Own|body"

    def test_page_layout_key_does_not_leak(self, write_files):
        # The page names base.jinja; base.jinja names nothing, so the chain ends
        src = write_files({"_includes/base.jinja": "[{{ content }}]"})
        assert _apply(_resolver(src), {"layout": "base.jinja"})[0] == "[body]"

    def test_absolute_layout_path(self, write_files):
        src = write_files({"layouts/main.jinja": "<{{ content }}>"})
        content, used = _apply(_resolver(src), {"layout": "/layouts/main.jinja"})
        assert content == "<body>"
        assert used == ["/layouts/main.jinja"]

    def test_layout_cached_until_deleted(self, write_files):
        src = write_files({"_includes/base.jinja": "v1 {{ content }}"})
        resolver = _resolver(src)
        assert _apply(resolver, {"layout": "base.jinja"})[0] == "v1 body"

        (src / "_includes" / "base.jinja").write_text("v2 {{ content }}", encoding="utf-8")
        resolver.delete_cache("/_includes/base.jinja")
        resolver.renderer.delete_cache("/_includes/base.jinja")
        assert _apply(resolver, {"layout": "base.jinja"})[0] == "v2 body"


class TestLayoutErrors:
    def test_cycle_detected(self, write_files):
        src = write_files(
            {
                "_includes/a.jinja": "---\nlayout: b.jinja\n---\nA{{ content }}",
                "_includes/b.jinja": "---\nlayout: a.jinja\n---\nB{{ content }}",
            }
        )
        with pytest.raises(LayoutCycleError, match="a.jinja -> /_includes/b.jinja") as exc_info:
            _apply(_resolver(src), {"layout": "a.jinja"})
        assert exc_info.value.src == "/page.md"
        assert not isinstance(exc_info.value, RenderError)

    def test_self_cycle(self, write_files):
        src = write_files({"_includes/a.jinja": "---\nlayout: a.jinja\n---\n{{ content }}"})
        with pytest.raises(LayoutCycleError):
            _apply(_resolver(src), {"layout": "a.jinja"})

    def test_missing_layout(self, write_files):
        src = write_files({})
        with pytest.raises(LayoutNotFoundError, match="missing.jinja") as exc_info:
            _apply(_resolver(src), {"layout": "missing.jinja"})
        assert exc_info.value.src == "/page.md"
        assert exc_info.value.filename == "/_includes/missing.jinja"

    def test_layout_render_error_carries_page(self, write_files):
        src = write_files({"_includes/bad.jinja": "{% if %}"})
        with pytest.raises(RenderError) as exc_info:
            _apply(_resolver(src), {"layout": "bad.jinja"})
        assert exc_info.value.src == "/page.md"
        assert exc_info.value.filename == "/_includes/bad.jinja"
