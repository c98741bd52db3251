"""Multi-engine rendering dispatcher.

The :class:`Renderer` resolves, for each render call, an ordered chain of
engine names and threads the content through them left to right. Engines
are looked up by name in the :class:`~quire.formats.FormatRegistry`: the
engine named ``"md"`` is the engine of the ``.md`` format.

Chain resolution, first rule that applies wins:

1. ``data["templateEngine"]``: a single name, a comma-separated string or a
   list of names.
2. The default engine of the filename's extension, if any; otherwise the
   chain is empty and the content passes through unchanged.

Engines report the files they read while rendering (includes, imports,
parent templates) with :func:`record_dependency`; the site wraps each page
in :func:`collect_dependencies` to learn what the output was derived from.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from quire.exceptions import PageError, RenderError
from quire.types import engine_names

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping

    from quire.formats import FormatRegistry

__all__ = [
    "Engine",
    "Helper",
    "HelperKind",
    "HelperOptions",
    "Renderer",
    "collect_dependencies",
    "record_dependency",
]

logger = logging.getLogger(__name__)

_COLLECTED: ContextVar[set[str] | None] = ContextVar("_COLLECTED", default=None)


def record_dependency(src: str) -> None:
    """Note that the render in progress read the site path ``src``."""
    collected = _COLLECTED.get()
    if collected is not None:
        collected.add(src)


@contextmanager
def collect_dependencies() -> Iterator[set[str]]:
    """Collect every path recorded inside the block.

    Each asyncio task sees its own collector. Nested blocks also report
    into the enclosing one.
    """
    found: set[str] = set()
    token = _COLLECTED.set(found)
    try:
        yield found
    finally:
        _COLLECTED.reset(token)
        outer = _COLLECTED.get()
        if outer is not None:
            outer.update(found)


class HelperKind(str, Enum):
    """How a helper is exposed inside templates."""

    FILTER = "filter"
    TAG = "tag"


@dataclass(frozen=True)
class HelperOptions:
    kind: HelperKind = HelperKind.FILTER
    body: bool = False


@dataclass(frozen=True)
class Helper:
    """A named function mirrored into every registered engine."""

    name: str
    fn: Callable[..., Any]
    options: HelperOptions = HelperOptions()


class Engine(ABC):
    """Capability contract every templating backend implements.

    Engines own their compiled-template caches (at most one entry per
    filename) and must drop an entry when :meth:`delete_cache` is called.
    Files read during a render are reported with :func:`record_dependency`.
    """

    @abstractmethod
    async def render(
        self,
        content: Any,
        data: Mapping[str, Any],
        filename: str | None = None,
    ) -> Any:
        """Render ``content`` with ``data``.

        Args:
            content: Template source (or the previous engine's output).
            data: Render context; engines must not mutate it.
            filename: Site path used as the compiled-template cache key.
        """

    @abstractmethod
    def render_component(
        self,
        content: Any,
        data: Mapping[str, Any],
        filename: str | None = None,
    ) -> Any:
        """Synchronously render a partial inside another template's evaluation."""

    @abstractmethod
    def add_helper(self, name: str, fn: Callable[..., Any], options: HelperOptions) -> None:
        """Expose ``fn`` under ``name``; re-registration replaces the binding."""

    @abstractmethod
    def delete_cache(self, filename: str | None = None) -> None:
        """Forget the compiled template of ``filename`` (all templates if ``None``)."""


class Renderer:
    """Resolves engine chains and fans helpers out to every engine.

    Usage::

        renderer = Renderer(formats)
        renderer.add_engine(jinja_engine)
        html = await renderer.render(source, data, "/index.jinja")
    """

    def __init__(self, formats: FormatRegistry) -> None:
        self.formats = formats
        self.helpers: dict[str, Helper] = {}
        self._engines: list[Engine] = []

    @property
    def engines(self) -> tuple[Engine, ...]:
        return tuple(self._engines)

    def add_engine(self, engine: Engine) -> None:
        """Track ``engine`` and replay every stored helper into it."""
        if any(engine is known for known in self._engines):
            return
        self._engines.append(engine)
        for helper in self.helpers.values():
            engine.add_helper(helper.name, helper.fn, helper.options)
        logger.debug(
            "Registered engine %s (%d helpers replayed)", type(engine).__name__, len(self.helpers)
        )

    def add_helper(
        self,
        name: str,
        fn: Callable[..., Any],
        options: HelperOptions | None = None,
    ) -> None:
        """Store a helper and mirror it into every registered engine."""
        helper = Helper(name=name, fn=fn, options=options or HelperOptions())
        if name in self.helpers:
            logger.debug("Replacing helper %r", name)
        self.helpers[name] = helper
        for engine in self._engines:
            engine.add_helper(name, fn, helper.options)

    def delete_cache(self, filename: str | None = None) -> None:
        for engine in self._engines:
            engine.delete_cache(filename)

    def get_engine(self, name: str) -> Engine | None:
        fmt = self.formats.get(name)
        return fmt.engine if fmt is not None else None

    def resolve_chain(self, data: Mapping[str, Any], filename: str) -> list[str]:
        """Return the ordered engine names for rendering ``filename``."""
        override = data.get("templateEngine")
        if override is not None:
            return engine_names(override)

        if self.formats.engine_for(filename) is None:
            return []
        ext = self.formats.matched_extension(filename)
        return [ext[1:]] if ext else []

    async def render(self, content: Any, data: Mapping[str, Any], filename: str) -> Any:
        """Apply the resolved chain to ``content``.

        Unknown engine names are identity steps. ``data`` is passed unchanged
        to every step.

        Raises:
            RenderError: If an engine fails to evaluate the template.
        """
        for name in self.resolve_chain(data, filename):
            engine = self.get_engine(name)
            if engine is None:
                logger.debug("No engine named %r for %s, passing through", name, filename)
                continue
            try:
                content = await engine.render(content, data, filename)
            except PageError:
                raise
            except Exception as e:
                raise RenderError(
                    f"Engine {name!r} failed rendering {filename}: {e}", filename=filename
                ) from e
        return content

    def render_component(self, content: Any, data: Mapping[str, Any], filename: str) -> Any:
        """Synchronously render an include with the engine owning ``filename``."""
        engine = self.formats.engine_for(filename)
        if engine is None:
            return content
        try:
            return engine.render_component(content, data, filename)
        except PageError:
            raise
        except Exception as e:
            raise RenderError(f"Failed rendering component {filename}: {e}", filename=filename) from e
