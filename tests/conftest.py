"""Shared fixtures for quire tests."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

from quire.config import QuireConfig, save_config
from quire.manifest import Manifest, save_manifest
from quire.project import CONFIG_FILE, MANIFEST_FILE, STATE_DIR
from quire.renderer import Engine
from quire.site import Site

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from quire.renderer import HelperOptions


class StubEngine(Engine):
    """Engine applying a plain function, recording calls and helpers."""

    def __init__(self, fn: Callable[[str], str] = lambda s: s) -> None:
        self.fn = fn
        self.calls: list[tuple[Any, str | None]] = []
        self.helpers: dict[str, tuple[Callable[..., Any], HelperOptions]] = {}
        self.cache: dict[str, Any] = {}
        self.deleted: list[str | None] = []

    async def render(
        self, content: Any, data: Mapping[str, Any], filename: str | None = None
    ) -> Any:
        return self.render_component(content, data, filename)

    def render_component(
        self, content: Any, data: Mapping[str, Any], filename: str | None = None
    ) -> Any:
        self.calls.append((content, filename))
        if filename is not None:
            self.cache[filename] = content
        return self.fn(str(content))

    def add_helper(self, name: str, fn: Callable[..., Any], options: HelperOptions) -> None:
        self.helpers[name] = (fn, options)

    def delete_cache(self, filename: str | None = None) -> None:
        self.deleted.append(filename)
        if filename is None:
            self.cache.clear()
        else:
            self.cache.pop(filename, None)


@pytest.fixture
def stub_engine() -> type[StubEngine]:
    return StubEngine


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A temporary directory simulating a project root."""
    return tmp_path


@pytest.fixture
def initialized_project(tmp_path: Path) -> Path:
    """A temporary project with quire.toml and .quire/ already initialized."""
    config = QuireConfig()
    config.data["title"] = "test-site"
    save_config(config, tmp_path / CONFIG_FILE)
    (tmp_path / "src" / "_includes").mkdir(parents=True)
    save_manifest(Manifest(), tmp_path / STATE_DIR / MANIFEST_FILE)
    return tmp_path


@pytest.fixture
def sample_file(tmp_path: Path) -> Path:
    """A small sample file for hash testing."""
    f = tmp_path / "sample.txt"
    f.write_text("Hello, static world!", encoding="utf-8")
    return f


@pytest.fixture
def write_files(tmp_path: Path) -> Callable[[dict[str, str]], Path]:
    """Write ``{relative path: text}`` under ``tmp_path/src`` and return the source dir."""

    def _write(files: dict[str, str]) -> Path:
        src = tmp_path / "src"
        for rel, text in files.items():
            path = src / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        src.mkdir(parents=True, exist_ok=True)
        return src

    return _write


@pytest.fixture
def make_site(tmp_path: Path, write_files: Callable[[dict[str, str]], Path]) -> Callable[..., Site]:
    """Build a Site over ``files`` with the given plugins installed."""

    def _make(
        files: dict[str, str],
        plugins: tuple[str, ...] = ("jinja", "markdown"),
        config: QuireConfig | None = None,
    ) -> Site:
        write_files(files)
        site = Site(tmp_path, config or QuireConfig())
        for name in plugins:
            site.use(name)
        return site

    return _make
