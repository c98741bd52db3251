"""Data cascade — computes each page's render context.

Precedence, low → high::

    site-wide data < directory data (root → leaf) < front matter < computed

Mappings deep-merge key by key, lists concatenate, scalars overwrite. The
reserved keys ``templateEngine``, ``layout`` and ``url`` always overwrite.

Directory data comes from ``_data.{yml,yaml,json,toml}`` files, merged into
the context directly, and from ``_data/`` directories, whose files merge
under their stem (nested directories become nested mappings).
"""

from __future__ import annotations

import copy
import logging
import posixpath
from typing import TYPE_CHECKING, Any

from quire.dates import extract_filename_date, parse_date
from quire.exceptions import DateParseError, LoadError
from quire.loaders import DATA_EXTENSIONS, load_data

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from pathlib import Path

    from quire.types import Page

__all__ = [
    "RESERVED_KEYS",
    "DataCascade",
    "ancestors",
    "merge",
    "url_to_dest",
]

logger = logging.getLogger(__name__)

RESERVED_KEYS: frozenset[str] = frozenset({"templateEngine", "layout", "url"})

DATA_FILE = "_data"


def _merge_value(current: Any, value: Any) -> Any:
    if isinstance(current, dict) and isinstance(value, dict):
        return _merge_dicts(current, value)
    if isinstance(current, list) and isinstance(value, list):
        return [*current, *copy.deepcopy(value)]
    return copy.deepcopy(value)


def _merge_dicts(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        result[key] = _merge_value(result[key], value) if key in result else copy.deepcopy(value)
    return result


def merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Return a new context with ``override`` layered over ``base``.

    Neither argument is mutated and no value is shared with ``override``.
    """
    result = dict(base)
    for key, value in override.items():
        if key in RESERVED_KEYS or key not in result:
            result[key] = copy.deepcopy(value)
        else:
            result[key] = _merge_value(result[key], value)
    return result


def ancestors(src: str) -> list[str]:
    """Directories containing ``src``, root first: ``/a/b.md`` → ``["/", "/a"]``."""
    directory = posixpath.dirname(src) or "/"
    parts = [part for part in directory.split("/") if part]
    dirs = ["/"]
    for i in range(len(parts)):
        dirs.append("/" + "/".join(parts[: i + 1]))
    return dirs


def url_to_dest(url: str) -> str:
    """Map a site URL to an output path relative to the destination root."""
    if url.endswith("/"):
        return url.lstrip("/") + "index.html"
    return url.lstrip("/")


class DataCascade:
    """Layered merge producing page contexts.

    Args:
        root: Absolute source directory.
        pretty_urls: Emit ``/post/`` instead of ``/post.html``.
    """

    def __init__(self, root: Path, *, pretty_urls: bool = True) -> None:
        self.root = root
        self.pretty_urls = pretty_urls
        self.site_data: dict[str, Any] = {}
        self.computed: dict[str, Callable[[dict[str, Any]], Any]] = {}
        self._dir_cache: dict[str, tuple[dict[str, Any], tuple[str, ...]]] = {}

    # -- registration ------------------------------------------------------

    def set_data(self, key: str, value: Any) -> None:
        self.site_data[key] = value

    def add_computed(self, name: str, fn: Callable[[dict[str, Any]], Any]) -> None:
        self.computed[name] = fn

    # -- directory data ----------------------------------------------------

    @staticmethod
    def data_owner(src: str) -> str | None:
        """The directory whose data a site path feeds, or ``None``.

        ``/blog/_data.yml`` and ``/blog/_data/authors.json`` both feed
        ``/blog``.
        """
        parts = src.strip("/").split("/")
        for i, part in enumerate(parts):
            if part == DATA_FILE or (
                i == len(parts) - 1 and part.startswith(DATA_FILE + ".")
                and posixpath.splitext(part)[1] in DATA_EXTENSIONS
            ):
                return "/" + "/".join(parts[:i])
        return None

    def invalidate(self, src: str | None = None) -> None:
        """Drop cached directory data (for one owning directory or all)."""
        owner = self.data_owner(src) if src else None
        if owner is None:
            self._dir_cache.clear()
        else:
            self._dir_cache.pop(owner, None)

    def directory_data(self, directory: str) -> tuple[dict[str, Any], tuple[str, ...]]:
        """Data declared by one directory and the data files it came from."""
        cached = self._dir_cache.get(directory)
        if cached is not None:
            return cached

        fs_dir = self.root / directory.lstrip("/")
        data: dict[str, Any] = {}
        files: list[str] = []

        for ext in DATA_EXTENSIONS:
            path = fs_dir / f"{DATA_FILE}{ext}"
            if not path.is_file():
                continue
            value = load_data(path)
            if not isinstance(value, dict):
                raise LoadError(f"{path.name} must contain a mapping", filename=str(path))
            data = merge(data, value)
            files.append(posixpath.join(directory, path.name))

        data_dir = fs_dir / DATA_FILE
        if data_dir.is_dir():
            for path in sorted(data_dir.rglob("*")):
                if not path.is_file() or path.suffix.lower() not in DATA_EXTENSIONS:
                    continue
                rel = path.relative_to(data_dir)
                keys = [*rel.parts[:-1], path.stem]
                nested: Any = load_data(path)
                for key in reversed(keys):
                    nested = {key: nested}
                data = merge(data, nested)
                files.append(posixpath.join(directory, DATA_FILE, rel.as_posix()))

        result = (data, tuple(files))
        self._dir_cache[directory] = result
        logger.debug("Directory data for %s: %d file(s)", directory, len(files))
        return result

    # -- page context ------------------------------------------------------

    def context_for(self, page: Page) -> tuple[dict[str, Any], list[str]]:
        """Build the full context for ``page``.

        Returns:
            The materialized context and the data files it depends on.

        Raises:
            LoadError: If a data file, date or computed field is invalid.
        """
        data = merge({}, self.site_data)
        dependencies: list[str] = []

        for directory in ancestors(page.src):
            dir_data, files = self.directory_data(directory)
            data = merge(data, dir_data)
            dependencies.extend(files)

        data = merge(data, page.front_matter)

        filename_date, _ = extract_filename_date(posixpath.basename(page.src))
        if "date" in data:
            try:
                data["date"] = parse_date(data["date"])
            except DateParseError as e:
                raise LoadError(str(e), src=page.src) from e
        elif filename_date is not None:
            data["date"] = filename_date

        url = self.compute_url(page, data)
        data["url"] = url if url is not None else False

        for name, fn in self.computed.items():
            try:
                data[name] = fn(data)
            except Exception as e:
                raise LoadError(f"Computed field {name!r} failed: {e}", src=page.src) from e

        return data, dependencies

    def compute_url(self, page: Page, data: Mapping[str, Any]) -> str | None:
        """Permalink of ``page``; ``None`` when output is suppressed."""
        explicit = data.get("url")
        if explicit is False:
            return None

        directory, name = posixpath.split(page.src)
        directory = directory.rstrip("/")

        if isinstance(explicit, str) and explicit:
            if explicit.startswith("/"):
                return explicit
            return posixpath.normpath(posixpath.join(directory or "/", explicit)) + (
                "/" if explicit.endswith("/") else ""
            )

        if page.is_asset or page.is_copy:
            return page.src

        _, name = extract_filename_date(name)
        if page.suffix and name.lower().endswith(page.suffix):
            name = name[: -len(page.suffix)]

        if name == "index":
            return f"{directory}/"
        if "." in name:
            return f"{directory}/{name}"
        if self.pretty_urls:
            return f"{directory}/{name}/"
        return f"{directory}/{name}.html"
