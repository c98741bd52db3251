"""Tests for quire.renderer module — engine chains and helpers."""

from __future__ import annotations

import asyncio

import pytest

from quire.exceptions import RenderError
from quire.formats import Format, FormatRegistry
from quire.renderer import (
    HelperKind,
    HelperOptions,
    Renderer,
    collect_dependencies,
    record_dependency,
)


@pytest.fixture
def renderer(stub_engine) -> Renderer:
    formats = FormatRegistry()
    renderer = Renderer(formats)
    foo = stub_engine(lambda s: s + "bar")
    upper = stub_engine(str.upper)
    formats.register(Format((".foo",), engine=foo))
    formats.register(Format((".upper",), engine=upper))
    renderer.add_engine(foo)
    renderer.add_engine(upper)
    return renderer


def _render(renderer: Renderer, data: dict, filename: str) -> str:
    return asyncio.run(renderer.render("content", data, filename))


class TestChains:
    def test_default_engine_from_extension(self, renderer: Renderer):
        assert _render(renderer, {}, "/page.foo") == "contentbar"

    def test_no_engine_passthrough(self, renderer: Renderer):
        assert _render(renderer, {}, "/page.txt") == "content"

    def test_chain_left_to_right(self, renderer: Renderer):
        assert _render(renderer, {"templateEngine": ["foo", "upper"]}, "/p.txt") == "CONTENTBAR"

    def test_chain_order_matters(self, renderer: Renderer):
        assert _render(renderer, {"templateEngine": ["upper", "foo"]}, "/p.txt") == "CONTENTbar"

    def test_comma_separated_string(self, renderer: Renderer):
        assert _render(renderer, {"templateEngine": "upper, foo"}, "/p.txt") == "CONTENTbar"

    def test_override_replaces_default(self, renderer: Renderer):
        assert _render(renderer, {"templateEngine": "upper"}, "/page.foo") == "CONTENT"

    def test_empty_override_is_identity(self, renderer: Renderer):
        assert _render(renderer, {"templateEngine": []}, "/page.foo") == "content"

    def test_unknown_engine_name_is_identity(self, renderer: Renderer):
        assert _render(renderer, {"templateEngine": "nope,foo"}, "/p.txt") == "contentbar"

    def test_data_passed_unchanged(self, renderer: Renderer):
        data = {"templateEngine": ["foo", "upper"], "title": "x"}
        _render(renderer, data, "/p.txt")
        assert data == {"templateEngine": ["foo", "upper"], "title": "x"}

    def test_resolve_chain(self, renderer: Renderer):
        assert renderer.resolve_chain({}, "/a.foo") == ["foo"]
        assert renderer.resolve_chain({}, "/a.md") == []
        assert renderer.resolve_chain({"templateEngine": "a,b"}, "/a.foo") == ["a", "b"]


class TestRenderComponent:
    def test_uses_owning_engine(self, renderer: Renderer):
        assert renderer.render_component("x", {}, "/_includes/nav.upper") == "X"

    def test_passthrough_without_engine(self, renderer: Renderer):
        assert renderer.render_component("x", {}, "/nav.txt") == "x"


class TestErrors:
    def test_engine_failure_wrapped(self, stub_engine):
        def boom(_: str) -> str:
            raise ValueError("bad template")

        formats = FormatRegistry()
        engine = stub_engine(boom)
        formats.register(Format((".bad",), engine=engine))
        renderer = Renderer(formats)
        renderer.add_engine(engine)

        with pytest.raises(RenderError, match="bad template") as exc_info:
            asyncio.run(renderer.render("x", {}, "/page.bad"))
        assert exc_info.value.filename == "/page.bad"
        assert isinstance(exc_info.value.__cause__, ValueError)


class TestHelpers:
    def test_helper_fans_out(self, renderer: Renderer):
        renderer.add_helper("shout", str.upper)
        for engine in renderer.engines:
            assert "shout" in engine.helpers

    def test_helper_replayed_into_late_engine(self, renderer: Renderer, stub_engine):
        renderer.add_helper("shout", str.upper, HelperOptions(HelperKind.TAG, body=True))
        late = stub_engine()
        renderer.add_engine(late)
        fn, options = late.helpers["shout"]
        assert fn is str.upper
        assert options.kind is HelperKind.TAG
        assert options.body is True

    def test_reregistration_replaces_everywhere(self, renderer: Renderer):
        renderer.add_helper("h", str.upper)
        renderer.add_helper("h", str.lower)
        assert renderer.helpers["h"].fn is str.lower
        for engine in renderer.engines:
            assert engine.helpers["h"][0] is str.lower

    def test_add_engine_twice_is_noop(self, renderer: Renderer):
        count = len(renderer.engines)
        renderer.add_engine(renderer.engines[0])
        assert len(renderer.engines) == count


class TestDeleteCache:
    def test_fans_out_to_every_engine(self, renderer: Renderer):
        _render(renderer, {"templateEngine": "foo,upper"}, "/p.txt")
        renderer.delete_cache("/p.txt")
        for engine in renderer.engines:
            assert "/p.txt" not in engine.cache
            assert engine.deleted == ["/p.txt"]

    def test_delete_all(self, renderer: Renderer):
        renderer.delete_cache()
        for engine in renderer.engines:
            assert engine.deleted == [None]


class TestDependencyCollection:
    def test_records_inside_block(self):
        with collect_dependencies() as found:
            record_dependency("/_includes/nav.jinja")
        assert found == {"/_includes/nav.jinja"}

    def test_record_outside_block_is_ignored(self):
        record_dependency("/_includes/nav.jinja")
        with collect_dependencies() as found:
            pass
        assert found == set()

    def test_nested_blocks_report_outward(self):
        with collect_dependencies() as outer:
            record_dependency("/a")
            with collect_dependencies() as inner:
                record_dependency("/b")
        assert inner == {"/b"}
        assert outer == {"/a", "/b"}

    def test_concurrent_tasks_are_isolated(self):
        async def render(name: str) -> set[str]:
            with collect_dependencies() as found:
                record_dependency(f"/{name}-1")
                await asyncio.sleep(0)
                record_dependency(f"/{name}-2")
            return found

        async def scenario() -> list[set[str]]:
            return await asyncio.gather(render("a"), render("b"))

        assert asyncio.run(scenario()) == [{"/a-1", "/a-2"}, {"/b-1", "/b-2"}]
