"""Project manager for quire.

Handles project initialization, status reporting, and project root discovery.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from quire.config import QuireConfig, default_config, load_config, save_config
from quire.manifest import Manifest, load_manifest, save_manifest

__all__ = [
    "CONFIG_FILE",
    "MANIFEST_FILE",
    "STATE_DIR",
    "ProjectManager",
    "ProjectStatus",
]

logger = logging.getLogger(__name__)

CONFIG_FILE = "quire.toml"
STATE_DIR = ".quire"
MANIFEST_FILE = "manifest.json"

_INDEX_TEMPLATE = """\
---
title: {name}
layout: base.jinja
---
# {name}

Welcome to your new site.
"""

_LAYOUT_TEMPLATE = """\
<!doctype html>
<html>
<head><title>{{ title }}</title></head>
<body>
{{ content }}
</body>
</html>
"""


@dataclass
class ProjectStatus:
    """Summary of the current project state."""

    initialized: bool
    root: Path
    page_count: int
    last_build: str
    config: QuireConfig | None


class ProjectManager:
    """Manages quire project lifecycle."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = root or Path.cwd()

    @property
    def config_path(self) -> Path:
        return self.root / CONFIG_FILE

    @property
    def state_dir(self) -> Path:
        return self.root / STATE_DIR

    @property
    def manifest_path(self) -> Path:
        return self.state_dir / MANIFEST_FILE

    @property
    def is_initialized(self) -> bool:
        return self.config_path.exists()

    def load_config(self) -> QuireConfig:
        return load_config(self.config_path)

    def init(self, name: str = "") -> Path:
        """Initialize a new quire project.

        Creates ``quire.toml``, the source and includes directories, a starter
        page and layout, and an empty manifest. Safe to call on an
        already-initialized project: existing files are left alone.

        Returns the config file path.
        """
        if self.config_path.exists():
            config = load_config(self.config_path)
            logger.info("Existing config found at %s", self.config_path)
        else:
            config = default_config()

        if name:
            config.data["title"] = name
        elif "title" not in config.data:
            config.data["title"] = self.root.name

        src_dir = self.root / config.site.src
        includes_dir = src_dir / config.site.includes
        includes_dir.mkdir(parents=True, exist_ok=True)

        index = src_dir / "index.md"
        if not any(src_dir.glob("index.*")):
            index.write_text(_INDEX_TEMPLATE.format(name=config.data["title"]), encoding="utf-8")
        layout = includes_dir / "base.jinja"
        if not layout.exists():
            layout.write_text(_LAYOUT_TEMPLATE, encoding="utf-8")

        save_config(config, self.config_path)

        if not self.manifest_path.exists():
            save_manifest(Manifest(), self.manifest_path)

        logger.info("Initialized quire project at %s", self.root)
        return self.config_path

    def status(self) -> ProjectStatus:
        """Get current project status."""
        if not self.is_initialized:
            return ProjectStatus(
                initialized=False,
                root=self.root,
                page_count=0,
                last_build="",
                config=None,
            )

        config = load_config(self.config_path)
        manifest = load_manifest(self.manifest_path) if self.manifest_path.exists() else Manifest()

        return ProjectStatus(
            initialized=True,
            root=self.root,
            page_count=len(manifest.pages),
            last_build=manifest.last_build,
            config=config,
        )

    @staticmethod
    def find_project_root(start: Path | None = None) -> Path | None:
        """Walk up from start directory to find a ``quire.toml``.

        Returns the project root or None if not found.
        """
        current = (start or Path.cwd()).resolve()
        while True:
            if (current / CONFIG_FILE).is_file():
                return current
            parent = current.parent
            if parent == current:
                return None
            current = parent
