"""Tests for quire.project module."""

from __future__ import annotations

from typing import TYPE_CHECKING

from quire.config import load_config
from quire.manifest import PageEntry, load_manifest, save_manifest
from quire.project import CONFIG_FILE, ProjectManager

if TYPE_CHECKING:
    from pathlib import Path


class TestInit:
    def test_creates_layout(self, project_dir: Path):
        pm = ProjectManager(project_dir)
        config_path = pm.init(name="notes")

        assert config_path == project_dir / CONFIG_FILE
        assert config_path.exists()
        assert (project_dir / "src" / "_includes" / "base.jinja").exists()
        assert (project_dir / ".quire" / "manifest.json").exists()

        index = (project_dir / "src" / "index.md").read_text(encoding="utf-8")
        assert "title: notes" in index
        assert "layout: base.jinja" in index

    def test_name_stored_as_site_data(self, project_dir: Path):
        ProjectManager(project_dir).init(name="notes")
        assert load_config(project_dir / CONFIG_FILE).data["title"] == "notes"

    def test_default_name_is_directory(self, project_dir: Path):
        ProjectManager(project_dir).init()
        assert load_config(project_dir / CONFIG_FILE).data["title"] == project_dir.name

    def test_existing_index_kept(self, project_dir: Path):
        src = project_dir / "src"
        src.mkdir()
        (src / "index.jinja").write_text("mine", encoding="utf-8")

        ProjectManager(project_dir).init()

        assert not (src / "index.md").exists()
        assert (src / "index.jinja").read_text(encoding="utf-8") == "mine"

    def test_reinit_keeps_config_and_manifest(self, initialized_project: Path):
        pm = ProjectManager(initialized_project)
        manifest = load_manifest(pm.manifest_path)
        manifest.add_page(PageEntry(src="/a.md", hash="sha256:a"))
        save_manifest(manifest, pm.manifest_path)

        pm.init()

        assert load_config(pm.config_path).data["title"] == "test-site"
        assert load_manifest(pm.manifest_path).get_page("/a.md") is not None


class TestStatus:
    def test_uninitialized(self, project_dir: Path):
        status = ProjectManager(project_dir).status()
        assert status.initialized is False
        assert status.page_count == 0
        assert status.config is None

    def test_initialized(self, initialized_project: Path):
        pm = ProjectManager(initialized_project)
        manifest = load_manifest(pm.manifest_path)
        manifest.add_page(PageEntry(src="/a.md", hash="sha256:a"))
        manifest.mark_built()
        save_manifest(manifest, pm.manifest_path)

        status = pm.status()
        assert status.initialized is True
        assert status.page_count == 1
        assert status.last_build == manifest.last_build
        assert status.config is not None


class TestFindProjectRoot:
    def test_finds_from_subdirectory(self, initialized_project: Path):
        nested = initialized_project / "src" / "blog"
        nested.mkdir(parents=True)
        assert ProjectManager.find_project_root(nested) == initialized_project.resolve()

    def test_none_outside_project(self, project_dir: Path):
        assert ProjectManager.find_project_root(project_dir) is None
