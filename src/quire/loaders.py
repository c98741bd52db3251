"""Source loaders — read files into raw content plus initial data.

Every loader is a plain callable ``loader(path) -> Loaded``. Text sources get
YAML front-matter extraction; data files (``_data.yml``, ``_data/*.json``...)
are parsed whole by ``load_data``.
"""

from __future__ import annotations

import json
import logging
import tomllib
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from quire.exceptions import LoadError

__all__ = [
    "DATA_EXTENSIONS",
    "Loaded",
    "Loader",
    "binary_loader",
    "load_data",
    "split_front_matter",
    "text_loader",
]

logger = logging.getLogger(__name__)

MAX_FILE_SIZE: int = 50 * 1024 * 1024  # 50 MB

DATA_EXTENSIONS: tuple[str, ...] = (".yml", ".yaml", ".json", ".toml")


@dataclass(frozen=True)
class Loaded:
    """Output of a loader: raw content and the data it declared."""

    content: str | bytes
    data: dict[str, Any] = field(default_factory=dict)


Loader = Callable[[Path], Loaded]


def _check_file_size(path: Path) -> None:
    try:
        size = path.stat().st_size
    except OSError as e:
        raise LoadError(f"Cannot stat {path}: {e}", filename=str(path)) from e
    if size > MAX_FILE_SIZE:
        raise LoadError(
            f"{path.name} ({size} bytes) exceeds maximum size ({MAX_FILE_SIZE} bytes)",
            filename=str(path),
        )


def split_front_matter(text: str) -> tuple[str | None, str]:
    """Split YAML front-matter from the document body.

    Front-matter must start with ``---`` on the first line and end with
    a second ``---`` on its own line.

    Returns:
        (frontmatter_text or None, body_text)
    """
    if not text.startswith("---"):
        return None, text

    end_idx = text.find("\n---", 3)
    if end_idx == -1:
        return None, text

    fm_text = text[3:end_idx].strip()
    body_start = end_idx + 4  # len("\n---")
    if body_start < len(text) and text[body_start] == "\n":
        body_start += 1

    return fm_text, text[body_start:]


def _parse_front_matter(fm_text: str, path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(fm_text)
    except yaml.YAMLError as e:
        raise LoadError(f"Invalid front matter in {path.name}: {e}", filename=str(path)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise LoadError(f"Front matter in {path.name} is not a mapping", filename=str(path))
    return {str(k): v for k, v in data.items()}


def text_loader(path: Path) -> Loaded:
    """Read a UTF-8 text source and extract its front matter."""
    _check_file_size(path)

    try:
        raw = path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        logger.warning("UTF-8 decode failed for %s, retrying with replacement", path.name)
        raw = path.read_bytes().decode("utf-8", errors="replace")
    except OSError as e:
        raise LoadError(f"Cannot read {path.name}: {e}", filename=str(path)) from e

    if raw.startswith("\ufeff"):
        raw = raw[1:]

    fm_text, body = split_front_matter(raw)
    data = _parse_front_matter(fm_text, path) if fm_text is not None else {}
    return Loaded(content=body, data=data)


def binary_loader(path: Path) -> Loaded:
    """Read a source verbatim as bytes."""
    _check_file_size(path)
    try:
        return Loaded(content=path.read_bytes())
    except OSError as e:
        raise LoadError(f"Cannot read {path.name}: {e}", filename=str(path)) from e


def load_data(path: Path) -> Any:
    """Parse a YAML, JSON or TOML data file.

    Returns:
        The parsed value (empty files yield an empty mapping).

    Raises:
        LoadError: If the file cannot be read or parsed.
    """
    suffix = path.suffix.lower()
    try:
        raw = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise LoadError(f"{path.name} is not valid UTF-8: {e}", filename=str(path)) from e
    except OSError as e:
        raise LoadError(f"Cannot read {path.name}: {e}", filename=str(path)) from e

    try:
        if suffix in (".yml", ".yaml"):
            value = yaml.safe_load(raw)
        elif suffix == ".json":
            value = json.loads(raw)
        elif suffix == ".toml":
            value = tomllib.loads(raw)
        else:
            raise LoadError(f"Unsupported data file: {path.name}", filename=str(path))
    except (yaml.YAMLError, json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
        raise LoadError(f"Invalid data file {path.name}: {e}", filename=str(path)) from e

    if value is None:
        value = {}
    logger.debug("Loaded data file %s", path)
    return value
