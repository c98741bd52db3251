"""Jinja2 template engine.

Compiled templates are cached per filename until ``delete_cache``. Includes
resolve from the includes directory first, then from the source root, so
``{% include "nav.jinja" %}`` and ``{% extends "/base.jinja" %}`` both work.
Every template loaded that way is reported as a dependency of the render.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import jinja2

from quire.exceptions import RenderError
from quire.loaders import text_loader
from quire.renderer import Engine, HelperKind, record_dependency

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, MutableMapping

    from quire.renderer import HelperOptions
    from quire.site import Site

__all__ = ["JinjaEngine", "install"]

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = [".jinja", ".j2", ".html"]


class TrackingLoader(jinja2.FileSystemLoader):
    """FileSystemLoader that keeps compiled templates and reports each load.

    The environment runs without its own cache so every ``include``,
    ``import`` and ``extends`` goes through :meth:`load`.
    """

    def __init__(self, search_paths: list[Path], root: Path) -> None:
        super().__init__([str(p) for p in search_paths])
        self.root = root.resolve()
        self.compiled: dict[str, jinja2.Template] = {}

    def site_path(self, filename: str) -> str | None:
        try:
            rel = Path(filename).resolve().relative_to(self.root)
        except ValueError:
            return None
        return "/" + rel.as_posix()

    def load(
        self,
        environment: jinja2.Environment,
        name: str,
        globals: MutableMapping[str, Any] | None = None,
    ) -> jinja2.Template:
        template = self.compiled.get(name)
        if template is None or not template.is_up_to_date:
            template = super().load(environment, name, globals)
            self.compiled[name] = template
        elif globals:
            template.globals.update(globals)

        if template.filename:
            src = self.site_path(template.filename)
            if src is not None:
                record_dependency(src)
        return template

    def forget(self, src: str | None = None) -> None:
        if src is None:
            self.compiled.clear()
            return
        for name, template in list(self.compiled.items()):
            if template.filename and self.site_path(template.filename) == src:
                del self.compiled[name]


class JinjaEngine(Engine):
    """Renders Jinja2 templates.

    Args:
        search_paths: Directories searched by ``include``/``extends``/``import``.
        root: Source root that reported dependencies are relative to
            (defaults to the last search path).
    """

    def __init__(self, search_paths: list[Path], root: Path | None = None) -> None:
        self.loader = TrackingLoader(search_paths, root or search_paths[-1])
        self.env = jinja2.Environment(
            loader=self.loader,
            autoescape=False,
            keep_trailing_newline=True,
            cache_size=0,
        )
        self.cache: dict[str, jinja2.Template] = {}

    def _template(self, content: Any, filename: str | None) -> jinja2.Template:
        if filename is None:
            return self.env.from_string(str(content))
        template = self.cache.get(filename)
        if template is None:
            try:
                template = self.env.from_string(str(content))
            except jinja2.TemplateSyntaxError as e:
                raise RenderError(
                    f"Syntax error in {filename} line {e.lineno}: {e.message}",
                    filename=filename,
                ) from e
            self.cache[filename] = template
        return template

    async def render(
        self,
        content: Any,
        data: Mapping[str, Any],
        filename: str | None = None,
    ) -> str:
        """Render synchronously; Jinja evaluation never yields to the event loop."""
        return self.render_component(content, data, filename)

    def render_component(
        self,
        content: Any,
        data: Mapping[str, Any],
        filename: str | None = None,
    ) -> str:
        template = self._template(content, filename)
        try:
            return template.render(dict(data))
        except jinja2.TemplateError as e:
            raise RenderError(f"Failed to render {filename or '<string>'}: {e}", filename=filename or "") from e

    def add_helper(self, name: str, fn: Callable[..., Any], options: HelperOptions) -> None:
        self.env.filters.pop(name, None)
        self.env.globals.pop(name, None)
        # Body helpers are filters too, so {% filter name %}...{% endfilter %} works
        if options.kind is HelperKind.FILTER or options.body:
            self.env.filters[name] = fn
        if options.kind is HelperKind.TAG:
            self.env.globals[name] = fn

    def delete_cache(self, filename: str | None = None) -> None:
        if filename is None:
            self.cache.clear()
        else:
            self.cache.pop(filename, None)
        self.loader.forget(filename)


def install(site: Site, options: dict[str, Any]) -> None:
    """Register the engine for the configured extensions and the ``jinja`` filter.

    Options:
        extensions: Page extensions (default ``.jinja``, ``.j2``, ``.html``).
        page_sub_extension: Only ``<sub><ext>`` files become pages.
        includes: Includes directory (default ``[site] includes``).
    """
    includes = "/" + str(options.get("includes", site.includes)).strip("/")
    engine = JinjaEngine([site.src_dir / includes.lstrip("/"), site.src_dir], root=site.src_dir)

    site.load_pages(
        options.get("extensions", DEFAULT_EXTENSIONS),
        text_loader,
        engine,
        page_sub_extension=options.get("page_sub_extension"),
        includes=includes,
    )

    def jinja_filter(text: str, data: Mapping[str, Any] | None = None) -> str:
        return engine.render_component(text, {**site.cascade.site_data, **(data or {})})

    site.filter("jinja", jinja_filter, body=True)
    logger.debug("Jinja engine searching %s", ", ".join(engine.loader.searchpath))
