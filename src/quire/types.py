"""Build data contracts for quire.

A ``Page`` flows through the site stages and is mutated in place:
  discover → cascade (data) → render (content) → process → persist (dest)

Summaries are frozen dataclasses handed back to callers after each cycle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from bs4 import BeautifulSoup

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

    from quire.exceptions import PageError
    from quire.sourcemaps import SourceMap

__all__ = [
    "BuildSummary",
    "Page",
    "PageFailure",
    "PageStatus",
    "engine_names",
]


def engine_names(value: object) -> list[str]:
    """Normalize a ``templateEngine`` value into an ordered list of names.

    Accepts a single name, a comma-separated string, or a list of names.
    Whitespace around each name is trimmed and empty entries are dropped.
    """
    if value is None or value is False:
        return []
    if isinstance(value, str):
        return [name.strip() for name in value.split(",") if name.strip()]
    if isinstance(value, (list, tuple)):
        return [str(name).strip() for name in value if str(name).strip()]
    return [str(value)]


class PageStatus(str, Enum):
    """Lifecycle state of a page within one build cycle."""

    PENDING = "pending"
    RENDERED = "rendered"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(eq=False)
class Page:
    """One source document and its derived render state."""

    src: str
    source_path: Path | None = None
    suffix: str = ""
    raw: str | bytes = ""
    front_matter: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)
    content: str | bytes = ""
    dest: str = ""
    is_asset: bool = False
    is_copy: bool = False
    status: PageStatus = PageStatus.PENDING
    error: PageError | None = None
    source_map: SourceMap | None = None
    _document: BeautifulSoup | None = field(default=None, repr=False)

    # -- reserved context keys ------------------------------------------

    @property
    def template_engine(self) -> list[str] | None:
        """The ``templateEngine`` override as a chain, or ``None`` if absent."""
        if "templateEngine" not in self.data:
            return None
        return engine_names(self.data["templateEngine"])

    @property
    def layout(self) -> str | None:
        value = self.data.get("layout")
        return str(value) if value else None

    @property
    def url(self) -> str | None:
        value = self.data.get("url")
        return value if isinstance(value, str) else None

    @property
    def date(self) -> datetime | None:
        return self.data.get("date")

    # -- output ----------------------------------------------------------

    @property
    def output_ext(self) -> str:
        name = self.dest.rsplit("/", 1)[-1]
        return "." + name.rsplit(".", 1)[-1].lower() if "." in name else ""

    @property
    def document(self) -> BeautifulSoup:
        """Parsed HTML tree of the rendered content, created on first access."""
        if self._document is None:
            text = self.content.decode("utf-8") if isinstance(self.content, bytes) else self.content
            self._document = BeautifulSoup(text, "html.parser")
        return self._document

    def flush_document(self) -> None:
        """Serialize a parsed document back into ``content``."""
        if self._document is not None:
            self.content = str(self._document)
            self._document = None

    def fail(self, error: PageError) -> None:
        self.status = PageStatus.FAILED
        self.error = error

    @property
    def failed(self) -> bool:
        return self.status is PageStatus.FAILED


@dataclass(frozen=True)
class PageFailure:
    """A page-scoped failure collected into the build summary."""

    src: str
    stage: str
    kind: str
    message: str


@dataclass(frozen=True)
class BuildSummary:
    """Outcome of one build or rebuild cycle."""

    scope: str
    rendered: int = 0
    copied: int = 0
    removed: int = 0
    skipped: int = 0
    duration: float = 0.0
    failures: tuple[PageFailure, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures
