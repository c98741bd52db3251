"""Format registry — binds file extensions to loaders and engines.

Resolution picks the longest registered extension suffix, so a ``.tmpl.js``
format wins over ``.js`` for ``app.tmpl.js``. A format may also declare a
page sub-extension: only files carrying ``<sub><ext>`` are pages, other files
with the same extension are components/partials and produce no output.
Paths matching no format are copied verbatim.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from quire.loaders import text_loader

if TYPE_CHECKING:
    from collections.abc import Iterator

    from quire.loaders import Loader
    from quire.renderer import Engine

__all__ = [
    "Format",
    "FormatRegistry",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Format:
    """Descriptor binding one or more extensions to a loader and engine."""

    extensions: tuple[str, ...]
    loader: Loader = text_loader
    engine: Engine | None = None
    page_sub_extension: str | None = None
    is_asset: bool = False
    includes: str | None = None

    def __post_init__(self) -> None:
        normalized = tuple(_normalize_ext(ext) for ext in self.extensions)
        object.__setattr__(self, "extensions", normalized)
        if self.page_sub_extension:
            object.__setattr__(
                self, "page_sub_extension", _normalize_ext(self.page_sub_extension)
            )


def _normalize_ext(ext: str) -> str:
    ext = ext.lower()
    return ext if ext.startswith(".") else f".{ext}"


def _basename(path: str) -> str:
    return path.replace("\\", "/").rsplit("/", 1)[-1].lower()


class FormatRegistry:
    """Extension → :class:`Format` lookup, kept in registration order.

    Usage::

        formats = FormatRegistry()
        formats.register(Format((".md",), loader=text_loader, engine=md))
        fmt = formats.resolve("/posts/hello.md")
    """

    def __init__(self) -> None:
        self._formats: dict[str, Format] = {}
        self._excluded: list[str] = []

    def __len__(self) -> int:
        return len(self._formats)

    def __contains__(self, ext: str) -> bool:
        return _normalize_ext(ext) in self._formats

    def __iter__(self) -> Iterator[Format]:
        seen: set[int] = set()
        for fmt in self._formats.values():
            if id(fmt) not in seen:
                seen.add(id(fmt))
                yield fmt

    def register(self, fmt: Format) -> None:
        """Store ``fmt`` under each of its extensions, replacing earlier ones.

        A format carrying an ``includes`` path reserves that path for
        partials: it is excluded from page discovery.
        """
        for ext in fmt.extensions:
            if ext in self._formats:
                logger.debug("Replacing format for %s", ext)
            self._formats[ext] = fmt

        if fmt.includes:
            self.exclude(fmt.includes)

        logger.debug("Registered format %s", ", ".join(fmt.extensions))

    def exclude(self, path: str) -> None:
        """Reserve a source path so discovery never emits pages from it."""
        normalized = "/" + path.strip("/")
        if normalized != "/" and normalized not in self._excluded:
            self._excluded.append(normalized)

    @property
    def excluded_paths(self) -> tuple[str, ...]:
        return tuple(self._excluded)

    def is_excluded(self, src: str) -> bool:
        """Whether a site path lies inside an excluded (includes) path."""
        return any(src == p or src.startswith(p + "/") for p in self._excluded)

    def get(self, ext: str) -> Format | None:
        """Exact lookup by extension (``"md"`` and ``".md"`` are equivalent)."""
        return self._formats.get(_normalize_ext(ext))

    def resolve(self, path: str) -> Format | None:
        """Return the format of the longest matching extension suffix.

        Never raises; ``None`` means the file is copied verbatim.
        """
        name = _basename(path)
        best: str | None = None
        for ext in self._formats:
            if name.endswith(ext) and len(name) > len(ext):
                if best is None or len(ext) > len(best):
                    best = ext
        return self._formats[best] if best is not None else None

    def matched_extension(self, path: str) -> str | None:
        """The registered extension ``resolve`` would match for ``path``."""
        fmt = self.resolve(path)
        if fmt is None:
            return None
        name = _basename(path)
        return max((ext for ext in fmt.extensions if name.endswith(ext)), key=len)

    def page_suffix(self, path: str, fmt: Format | None = None) -> str | None:
        """Return the full page suffix of ``path``, or ``None`` for components.

        Without a page sub-extension this is the matched extension; with one,
        the file must end in ``<sub><ext>`` (e.g. ``.tmpl.js``).
        """
        fmt = fmt or self.resolve(path)
        ext = self.matched_extension(path)
        if fmt is None or ext is None:
            return None
        if not fmt.page_sub_extension:
            return ext

        suffix = fmt.page_sub_extension + ext
        name = _basename(path)
        if name.endswith(suffix) and len(name) > len(suffix):
            return suffix
        return None

    def engine_for(self, filename: str) -> Engine | None:
        """Default engine for a filename, or ``None`` for passthrough."""
        fmt = self.resolve(filename)
        return fmt.engine if fmt is not None else None
