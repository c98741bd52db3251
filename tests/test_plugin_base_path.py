"""Tests for quire.plugins.base_path module."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from quire.config import QuireConfig
from quire.plugins.base_path import prefix_url

if TYPE_CHECKING:
    from pathlib import Path


class TestPrefixUrl:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("/about/", "/docs/about/"),
            ("/", "/docs/"),
            ("/docs/already/", "/docs/already/"),
            ("relative.html", "relative.html"),
            ("https://example.com/x", "https://example.com/x"),
            ("//cdn.example.com/x.js", "//cdn.example.com/x.js"),
            ("#top", "#top"),
        ],
    )
    def test_prefix(self, url: str, expected: str):
        assert prefix_url(url, "/docs") == expected

    def test_empty_base(self):
        assert prefix_url("/about/", "") == "/about/"


def _config(location: str) -> QuireConfig:
    config = QuireConfig()
    config.site.location = location
    return config


class TestInstall:
    def test_rewrites_html(self, make_site, tmp_path: Path):
        page = (
            '<a href="/about/">a</a><img src="/logo.png" srcset="/a.png 1x, /b.png 2x">'
            '<a href="https://x.org/">x</a>'
        )
        site = make_site(
            {"index.html": page},
            plugins=("jinja", "base_path"),
            config=_config("https://example.com/docs/"),
        )
        asyncio.run(site.build())

        out = (tmp_path / "_site" / "index.html").read_text(encoding="utf-8")
        assert 'href="/docs/about/"' in out
        assert 'src="/docs/logo.png"' in out
        assert 'srcset="/docs/a.png 1x, /docs/b.png 2x"' in out
        assert 'href="https://x.org/"' in out

    def test_root_location_is_noop(self, make_site, tmp_path: Path):
        site = make_site({"index.html": '<a href="/about/">a</a>'}, plugins=("jinja", "base_path"))
        asyncio.run(site.build())
        out = (tmp_path / "_site" / "index.html").read_text(encoding="utf-8")
        assert out == '<a href="/about/">a</a>'

    def test_non_html_untouched(self, make_site, tmp_path: Path):
        site = make_site(
            {"feed.xml.jinja": '<link href="/x/"/>'},
            plugins=("jinja", "base_path"),
            config=_config("/docs/"),
        )
        asyncio.run(site.build())
        out = (tmp_path / "_site" / "feed.xml").read_text(encoding="utf-8")
        assert out == '<link href="/x/"/>'
