"""Tests for quire.plugins.attributes module."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from quire.plugins.attributes import attr, class_name

if TYPE_CHECKING:
    from pathlib import Path


class TestAttr:
    def test_mapping(self):
        assert attr({"id": "main", "hidden": True, "title": "A & B"}) == (
            'id="main" hidden title="A &amp; B"'
        )

    def test_false_and_none_dropped(self):
        assert attr({"hidden": False, "id": None, "lang": "en"}) == 'lang="en"'

    def test_class_values_merged(self):
        assert attr({"class": ["a", {"b": True, "c": False}]}) == 'class="a b"'

    def test_names_as_booleans(self):
        assert attr(["checked", "disabled"]) == "checked disabled"

    def test_valid_names_filter(self):
        assert attr({"id": "x", "onclick": "evil()"}, "id") == 'id="x"'

    def test_list_of_mappings(self):
        assert attr([{"class": "a"}, {"class": "b", "id": "y"}]) == 'class="a b" id="y"'

    def test_empty(self):
        assert attr({}) == ""
        assert attr(None) == ""


class TestClassName:
    def test_mixed(self):
        assert class_name("a", ["b", "c"], {"d": True, "e": False}) == "a b c d"

    def test_deduplicates(self):
        assert class_name("a", "a", ["a"]) == "a"

    def test_falsy_skipped(self):
        assert class_name("", None, [], "x") == "x"


class TestInstall:
    def test_filters_in_templates(self, make_site, tmp_path: Path):
        files = {
            "a.jinja": '<p {{ {"id": "x", "class": ["a", {"b": on}]} | attr }}>'
            '<i class="{{ ["c", "d"] | class }}">',
        }
        site = make_site(files, plugins=("jinja", "attributes"))
        site.data("on", True)
        asyncio.run(site.build())
        out = (tmp_path / "_site" / "a" / "index.html").read_text(encoding="utf-8")
        assert out == '<p id="x" class="a b"><i class="c d">'
