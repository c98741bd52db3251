"""Prefix root-relative URLs in HTML with the path of ``[site] location``.

A site deployed under ``https://example.com/docs/`` needs ``href="/about/"``
to become ``href="/docs/about/"``. Works on the parsed page document.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

if TYPE_CHECKING:
    from quire.site import Site
    from quire.types import Page

__all__ = ["install", "prefix_url"]

logger = logging.getLogger(__name__)

DEFAULT_ATTRIBUTES = ("href", "src", "action", "poster")


def prefix_url(url: str, base: str) -> str:
    """Prefix a root-relative URL; anything else is returned unchanged."""
    if not url.startswith("/") or url.startswith("//") or not base:
        return url
    if url == base or url.startswith(base + "/"):
        return url
    return base + url


def _prefix_srcset(value: str, base: str) -> str:
    candidates = []
    for candidate in value.split(","):
        parts = candidate.strip().split(maxsplit=1)
        if parts:
            parts[0] = prefix_url(parts[0], base)
        candidates.append(" ".join(parts))
    return ", ".join(candidates)


def install(site: Site, options: dict[str, Any]) -> None:
    """Options:
        extensions: Output extensions to rewrite (default ``[".html"]``).
        attributes: Attribute names holding URLs.
    """
    base = urlparse(site.config.site.location).path.rstrip("/")
    attributes = tuple(options.get("attributes", DEFAULT_ATTRIBUTES))

    def base_path(pages: list[Page]) -> None:
        if not base:
            return
        for page in pages:
            document = page.document
            for attribute in attributes:
                for element in document.find_all(attrs={attribute: True}):
                    element[attribute] = prefix_url(str(element[attribute]), base)
            for element in document.find_all(attrs={"srcset": True}):
                element["srcset"] = _prefix_srcset(str(element["srcset"]), base)
            logger.debug("Prefixed URLs in %s with %s", page.src, base)

    site.process(options.get("extensions", [".html"]), base_path)
