"""Custom exception hierarchy for quire."""

from __future__ import annotations

__all__ = [
    "BuildError",
    "ConfigError",
    "DateParseError",
    "LayoutCycleError",
    "LayoutNotFoundError",
    "LoadError",
    "ManifestError",
    "PageError",
    "PluginError",
    "ProcessorError",
    "QuireError",
    "RenderError",
    "RestartRequired",
]


class QuireError(Exception):
    """Base exception for all quire errors."""


class ConfigError(QuireError):
    """Raised when configuration loading or validation fails."""


class ManifestError(QuireError):
    """Raised when build manifest operations fail."""


class PluginError(QuireError):
    """Raised when plugin lookup or registration fails."""


class BuildError(QuireError):
    """Raised when a build cannot proceed at all (discovery, output directory)."""


class DateParseError(QuireError):
    """Raised when a front-matter date cannot be normalized."""


class RestartRequired(QuireError):
    """Raised when a change requires restarting the whole pipeline."""

    def __init__(self, message: str, files: frozenset[str] = frozenset()) -> None:
        super().__init__(message)
        self.files = files


class PageError(QuireError):
    """Base class for failures scoped to a single page."""

    kind = "page"

    def __init__(self, message: str, src: str = "", filename: str = "") -> None:
        super().__init__(message)
        self.src = src
        self.filename = filename


class LoadError(PageError):
    """Raised when a loader cannot read a source file."""

    kind = "load"


class RenderError(PageError):
    """Raised when an engine fails to evaluate a template."""

    kind = "render"


class LayoutCycleError(PageError):
    """Raised when a layout chain revisits a template already in the chain."""

    kind = "layout-cycle"


class LayoutNotFoundError(PageError):
    """Raised when a page names a layout that does not exist."""

    kind = "layout-missing"


class ProcessorError(PageError):
    """Raised when a post-render processor fails."""

    kind = "processor"
