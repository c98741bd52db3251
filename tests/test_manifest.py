"""Tests for quire.manifest module."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from quire.exceptions import ManifestError
from quire.manifest import (
    Manifest,
    PageEntry,
    compute_hash,
    hash_bytes,
    load_manifest,
    save_manifest,
)


class TestComputeHash:
    def test_consistent_hash(self, sample_file: Path):
        assert compute_hash(sample_file) == compute_hash(sample_file)

    def test_hash_starts_with_sha256(self, sample_file: Path):
        assert compute_hash(sample_file).startswith("sha256:")

    def test_matches_hash_bytes(self, sample_file: Path):
        assert compute_hash(sample_file) == hash_bytes(b"Hello, static world!")

    def test_different_content_different_hash(self, tmp_path: Path):
        f1 = tmp_path / "a.txt"
        f2 = tmp_path / "b.txt"
        f1.write_text("content A", encoding="utf-8")
        f2.write_text("content B", encoding="utf-8")
        assert compute_hash(f1) != compute_hash(f2)

    def test_nonexistent_file_raises_error(self, tmp_path: Path):
        with pytest.raises(ManifestError, match="Failed to hash"):
            compute_hash(tmp_path / "nonexistent.txt")


class TestManifestCRUD:
    def test_empty_manifest(self):
        m = Manifest()
        assert m.pages == []
        assert m.schema_version == "1"

    def test_add_and_get(self):
        m = Manifest()
        m.add_page(PageEntry(src="/index.md", hash="sha256:abc", dest="index.html"))
        entry = m.get_page("/index.md")
        assert entry is not None
        assert entry.dest == "index.html"

    def test_add_replaces_same_src(self):
        m = Manifest()
        m.add_page(PageEntry(src="/a.md", hash="sha256:1"))
        m.add_page(PageEntry(src="/a.md", hash="sha256:2"))
        assert len(m.pages) == 1
        assert m.pages[0].hash == "sha256:2"

    def test_remove(self):
        m = Manifest()
        m.add_page(PageEntry(src="/a.md", hash="sha256:1"))
        assert m.remove_page("/a.md") is True
        assert m.remove_page("/a.md") is False

    def test_is_changed(self):
        m = Manifest()
        m.add_page(PageEntry(src="/a.md", hash="sha256:1"))
        assert m.is_changed("/a.md", "sha256:1") is False
        assert m.is_changed("/a.md", "sha256:2") is True
        assert m.is_changed("/new.md", "sha256:1") is True

    def test_mark_built(self):
        m = Manifest()
        m.mark_built()
        assert m.last_build.endswith("+00:00")


class TestManifestPersistence:
    def test_round_trip(self, tmp_path: Path):
        path = tmp_path / ".quire" / "manifest.json"
        m = Manifest(config_hash="sha256:cfg")
        m.add_page(
            PageEntry(
                src="/blog/post.md",
                hash="sha256:p",
                dest="blog/post/index.html",
                dependencies=("/_includes/base.jinja", "/_data.yml"),
            )
        )
        m.add_page(PageEntry(src="/logo.png", hash="sha256:l", dest="logo.png"))
        m.file_hashes["/_includes/base.jinja"] = "sha256:b"
        m.mark_built()

        save_manifest(m, path)
        loaded = load_manifest(path)

        assert loaded.config_hash == "sha256:cfg"
        assert loaded.last_build == m.last_build
        assert loaded.get_page("/blog/post.md") == m.get_page("/blog/post.md")
        assert loaded.get_page("/logo.png") == m.get_page("/logo.png")
        assert loaded.file_hashes == {"/_includes/base.jinja": "sha256:b"}

    def test_json_layout(self, tmp_path: Path):
        path = tmp_path / "manifest.json"
        m = Manifest()
        m.add_page(PageEntry(src="/b.md", hash="sha256:b"))
        m.add_page(PageEntry(src="/a.md", hash="sha256:a", dependencies=("/_x.yml",)))
        save_manifest(m, path)

        data = json.loads(path.read_text(encoding="utf-8"))
        assert [p["src"] for p in data["pages"]] == ["/a.md", "/b.md"]
        assert data["pages"][0]["dependencies"] == ["/_x.yml"]
        assert "dependencies" not in data["pages"][1]

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ManifestError, match="not found"):
            load_manifest(tmp_path / "manifest.json")

    def test_corrupt_json(self, tmp_path: Path):
        path = tmp_path / "manifest.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ManifestError, match="Failed to load"):
            load_manifest(path)

    def test_not_an_object(self, tmp_path: Path):
        path = tmp_path / "manifest.json"
        path.write_text("[]", encoding="utf-8")
        with pytest.raises(ManifestError, match="not a JSON object"):
            load_manifest(path)

    def test_entry_missing_fields(self, tmp_path: Path):
        path = tmp_path / "manifest.json"
        path.write_text('{"pages": [{"src": "/a.md"}]}', encoding="utf-8")
        with pytest.raises(ManifestError, match="missing required fields"):
            load_manifest(path)
