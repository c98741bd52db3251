"""CSS assets: ``@import`` bundling and whitespace/comment minification.

Both steps emit source maps that are chained through
:func:`~quire.sourcemaps.save_asset`, so the final map points at the
original files. The bundler runs as a merging processor and walks its pages
sequentially; imports are recorded as page dependencies.

Import resolution:

- ``./x.css`` / ``../x.css``: relative to the importing file;
- ``/x.css``: from the source root;
- ``x.css``: from the includes directory.

Imports with media queries or remote URLs are left untouched.
"""

from __future__ import annotations

import logging
import posixpath
import re
from typing import TYPE_CHECKING, Any

from quire.exceptions import LoadError, ProcessorError
from quire.loaders import text_loader
from quire.sourcemaps import SourceMap, prepare_asset, save_asset

if TYPE_CHECKING:
    from quire.site import Site
    from quire.types import Page

__all__ = ["bundle_css", "install", "minify_css", "resolve_import"]

logger = logging.getLogger(__name__)

_IMPORT_RE = re.compile(
    r"""^\s*@import\s+(?:url\(\s*)?(["']?)(?P<path>[^"')\s]+)\1\s*\)?\s*(?P<media>[^;]*);\s*$"""
)

# No whitespace is needed after/before these characters
_TIGHT_BEFORE = frozenset("{};,>")
_TIGHT_AFTER = frozenset("{};,>:")


def resolve_import(path: str, importer: str, includes: str) -> str | None:
    """Site path of an ``@import`` target; ``None`` for remote URLs."""
    if "://" in path or path.startswith("//") or path.startswith("data:"):
        return None
    if path.startswith("/"):
        return posixpath.normpath(path)
    if path.startswith("."):
        return posixpath.normpath(posixpath.join(posixpath.dirname(importer), path))
    return posixpath.normpath(posixpath.join(includes, path))


def bundle_css(
    content: str,
    filename: str,
    read: Any,
    includes: str,
) -> tuple[str, SourceMap, list[str]]:
    """Inline local ``@import`` rules recursively.

    Args:
        content: Source of ``filename``.
        filename: Site path of the entry file.
        read: ``read(site_path) -> str`` for imported files.
        includes: Site path bare imports resolve against.

    Returns:
        The bundled CSS, a line-granular map to the original files and the
        site paths of every imported file.
    """
    smap = SourceMap()
    out: list[str] = []
    imported: list[str] = []
    seen = {filename}

    def inline(text: str, source: str) -> None:
        smap.source_index(source, text)
        for line_no, line in enumerate(text.split("\n")):
            match = _IMPORT_RE.match(line)
            target = None
            if match and not match.group("media").strip():
                target = resolve_import(match.group("path"), source, includes)
            if target is None:
                smap.add_mapping(len(out), 0, source, line_no, 0)
                out.append(line)
                continue
            if target in seen:
                logger.debug("Skipping repeated import of %s in %s", target, source)
                continue
            seen.add(target)
            imported.append(target)
            inline(read(target), target)

    inline(content, filename)
    return "\n".join(out), smap, imported


def minify_css(css: str, source: str | None = None) -> tuple[str, SourceMap | None]:
    """Remove comments and redundant whitespace without rewriting rules.

    With ``source`` set, also returns a map whose segments mark where each
    input line's first kept character landed.
    """
    smap = SourceMap() if source is not None else None
    buf: list[str] = []
    last_line = -1
    pending_space = False
    line = col = 0
    i, n = 0, len(css)

    def emit(text: str, at_line: int, at_col: int) -> None:
        nonlocal last_line
        if smap is not None and at_line != last_line:
            smap.add_mapping(0, len(buf), source, at_line, at_col)
            last_line = at_line
        buf.extend(text)

    def advance(text: str) -> None:
        nonlocal line, col
        for ch in text:
            if ch == "\n":
                line += 1
                col = 0
            else:
                col += 1

    while i < n:
        ch = css[i]
        if ch == "/" and css.startswith("/*", i):
            end = css.find("*/", i + 2)
            end = n if end == -1 else end + 2
            advance(css[i:end])
            i = end
            pending_space = True
            continue
        if ch.isspace():
            advance(ch)
            i += 1
            pending_space = True
            continue

        if pending_space and buf and buf[-1] not in _TIGHT_AFTER and ch not in _TIGHT_BEFORE:
            emit(" ", line, col)
        pending_space = False

        if ch in "\"'":
            end = i + 1
            while end < n and css[end] != ch:
                end += 2 if css[end] == "\\" else 1
            token = css[i : end + 1]
        else:
            token = ch
            if ch == "}" and buf and buf[-1] == ";":
                buf.pop()

        emit(token, line, col)
        advance(token)
        i += len(token)

    return "".join(buf), smap


def install(site: Site, options: dict[str, Any]) -> None:
    """Load ``.css`` assets and register the CSS processor.

    Options:
        extensions: Asset extensions (default ``[".css"]``).
        includes: Where bare imports resolve; ``false`` disables bundling.
        minify: Minify after bundling (default ``true``).
    """
    extensions = options.get("extensions", [".css"])
    includes_opt = options.get("includes", site.includes)
    minify = bool(options.get("minify", True))

    site.load_assets(extensions, text_loader)

    def read(src: str) -> str:
        path = site.src_dir / src.lstrip("/")
        if not path.is_file():
            raise ProcessorError(f"Imported file not found: {src}", filename=src)
        try:
            return str(text_loader(path).content)
        except LoadError as e:
            raise ProcessorError(f"Cannot read import {src}: {e}", filename=src) from e

    def transform(page: Page) -> None:
        if includes_opt:
            asset = prepare_asset(site, page)
            includes = "/" + str(includes_opt).strip("/")
            bundled, bundle_map, imported = bundle_css(asset.content, asset.filename, read, includes)
            save_asset(site, page, bundled, bundle_map if asset.enabled else None)
            if imported:
                deps = site.tracker.dependencies_of(page.src) | set(imported)
                site.tracker.record(page.src, deps)
                logger.debug("Bundled %d import(s) into %s", len(imported), page.src)

        if minify:
            asset = prepare_asset(site, page)
            minified, min_map = minify_css(asset.content, asset.filename if asset.enabled else None)
            save_asset(site, page, minified, min_map)

    def css_bundler(pages: list[Page]) -> None:
        # Sequential: bundles share the import reader
        for page in pages:
            try:
                transform(page)
            except ProcessorError as e:
                e.src = page.src
                page.fail(e)
                logger.warning("CSS processing failed for %s: %s", page.src, e)

    def css_transformer(pages: list[Page]) -> None:
        for page in pages:
            transform(page)

    if includes_opt:
        site.process(extensions, css_bundler, merge=True)
    else:
        site.process(extensions, css_transformer)
