"""Build manifest for quire.

Records, per page, the SHA-256 of its source, its output path and the files
it depended on, so a later one-shot build can rebuild only what changed.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from quire.exceptions import ManifestError

if TYPE_CHECKING:
    from pathlib import Path

__all__ = [
    "Manifest",
    "PageEntry",
    "compute_hash",
    "hash_bytes",
    "load_manifest",
    "save_manifest",
]

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 65536


@dataclass(frozen=True)
class PageEntry:
    """Immutable record of a built page."""

    src: str
    hash: str
    dest: str = ""
    dependencies: tuple[str, ...] = ()


@dataclass
class Manifest:
    """Build state of a project.

    ``file_hashes`` covers every dependency file seen in the last build, so
    changes to layouts and data files can be detected without a watcher.
    """

    schema_version: str = "1"
    config_hash: str = ""
    last_build: str = ""
    _pages: dict[str, PageEntry] = field(default_factory=dict)
    file_hashes: dict[str, str] = field(default_factory=dict)

    @property
    def pages(self) -> list[PageEntry]:
        return list(self._pages.values())

    def add_page(self, entry: PageEntry) -> None:
        self._pages[entry.src] = entry

    def remove_page(self, src: str) -> bool:
        """Remove a page by source path. Returns True if found and removed."""
        if src in self._pages:
            del self._pages[src]
            return True
        return False

    def get_page(self, src: str) -> PageEntry | None:
        return self._pages.get(src)

    def is_changed(self, src: str, current_hash: str) -> bool:
        """True if the page is new or its source hash differs."""
        existing = self.get_page(src)
        if existing is None:
            return True
        return existing.hash != current_hash

    def mark_built(self) -> None:
        self.last_build = datetime.now(UTC).isoformat()


def hash_bytes(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def compute_hash(path: Path) -> str:
    """Compute SHA-256 hash of a file's contents."""
    h = hashlib.sha256()
    try:
        with path.open("rb") as f:
            while True:
                chunk = f.read(HASH_CHUNK_SIZE)
                if not chunk:
                    break
                h.update(chunk)
    except OSError as e:
        raise ManifestError(f"Failed to hash file {path}: {e}") from e
    return f"sha256:{h.hexdigest()}"


def _entry_to_dict(entry: PageEntry) -> dict[str, object]:
    d: dict[str, object] = {"src": entry.src, "hash": entry.hash, "dest": entry.dest}
    if entry.dependencies:
        d["dependencies"] = list(entry.dependencies)
    return d


def _entry_from_dict(data: dict[str, object]) -> PageEntry:
    missing = [k for k in ("src", "hash") if k not in data]
    if missing:
        raise ManifestError(f"Page entry missing required fields: {missing}")
    deps = data.get("dependencies", [])
    if not isinstance(deps, list):
        raise ManifestError(f"Invalid dependencies for {data['src']}: {deps!r}")
    return PageEntry(
        src=str(data["src"]),
        hash=str(data["hash"]),
        dest=str(data.get("dest", "")),
        dependencies=tuple(str(d) for d in deps),
    )


def save_manifest(manifest: Manifest, path: Path) -> None:
    """Save manifest to a JSON file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "schema_version": manifest.schema_version,
        "config_hash": manifest.config_hash,
        "last_build": manifest.last_build,
        "pages": [_entry_to_dict(p) for p in sorted(manifest.pages, key=lambda p: p.src)],
        "files": dict(sorted(manifest.file_hashes.items())),
    }
    try:
        path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        logger.info("Saved manifest to %s", path)
    except OSError as e:
        logger.error("Failed to save manifest to %s: %s", path, e)
        raise ManifestError(f"Failed to save manifest to {path}: {e}") from e


def load_manifest(path: Path) -> Manifest:
    """Load manifest from a JSON file."""
    if not path.exists():
        raise ManifestError(f"Manifest file not found: {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Failed to load manifest from %s: %s", path, e)
        raise ManifestError(f"Failed to load manifest from {path}: {e}") from e

    if not isinstance(data, dict):
        raise ManifestError(f"Manifest {path} is not a JSON object")

    manifest = Manifest(
        schema_version=str(data.get("schema_version", "1")),
        config_hash=str(data.get("config_hash", "")),
        last_build=str(data.get("last_build", "")),
        file_hashes={str(k): str(v) for k, v in dict(data.get("files", {})).items()},
    )
    for page_data in data.get("pages", []):
        manifest.add_page(_entry_from_dict(page_data))

    logger.info("Loaded manifest from %s (%d pages)", path, len(manifest.pages))
    return manifest
