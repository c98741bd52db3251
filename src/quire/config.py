"""Configuration system for quire.

Manages project configuration via ``quire.toml`` with typed dataclasses and
sensible defaults for all values.
"""

from __future__ import annotations

import hashlib
import logging
import tomllib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

import tomli_w

from quire.exceptions import ConfigError

if TYPE_CHECKING:
    from pathlib import Path

_T = TypeVar("_T")

__all__ = [
    "BuildConfig",
    "PluginsConfig",
    "QuireConfig",
    "SiteConfig",
    "WatchConfig",
    "config_hash",
    "default_config",
    "load_config",
    "save_config",
]

logger = logging.getLogger(__name__)


@dataclass
class SiteConfig:
    """[site] section."""

    src: str = "src"
    dest: str = "_site"
    includes: str = "_includes"
    location: str = "/"
    pretty_urls: bool = True


@dataclass
class BuildConfig:
    """[build] section."""

    workers: int = 8
    source_maps: bool = False
    incremental: bool = False


@dataclass
class WatchConfig:
    """[watch] section."""

    debounce_ms: int = 100
    ignore: list[str] = field(default_factory=lambda: [".git/*", "*.swp", "*~"])
    restart_on: list[str] = field(default_factory=list)


@dataclass
class PluginsConfig:
    """[plugins] section; ``options`` holds the ``[plugins.options.<name>]`` tables."""

    use: list[str] = field(default_factory=lambda: ["jinja", "markdown", "attributes"])
    options: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass
class QuireConfig:
    """Root configuration combining all sections."""

    site: SiteConfig = field(default_factory=SiteConfig)
    build: BuildConfig = field(default_factory=BuildConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    plugins: PluginsConfig = field(default_factory=PluginsConfig)
    data: dict[str, Any] = field(default_factory=dict)


_SECTIONS: dict[str, type] = {
    "site": SiteConfig,
    "build": BuildConfig,
    "watch": WatchConfig,
    "plugins": PluginsConfig,
}


def default_config() -> QuireConfig:
    """Return a config with all default values."""
    return QuireConfig()


def _config_to_dict(config: QuireConfig) -> dict[str, object]:
    """Convert QuireConfig to a nested dict suitable for TOML serialization."""
    result: dict[str, object] = {}
    for section_name in _SECTIONS:
        result[section_name] = dict(vars(getattr(config, section_name)))
    if config.data:
        result["data"] = dict(config.data)
    return result


def config_hash(config: QuireConfig) -> str:
    """Stable digest of a configuration, used to invalidate incremental state."""
    payload = tomli_w.dumps(_config_to_dict(config)).encode("utf-8")
    return f"sha256:{hashlib.sha256(payload).hexdigest()}"


def save_config(config: QuireConfig, path: Path) -> None:
    """Save configuration to a TOML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = _config_to_dict(config)
    try:
        with path.open("wb") as f:
            tomli_w.dump(data, f)
        logger.info("Saved config to %s", path)
    except OSError as e:
        logger.error("Failed to save config to %s: %s", path, e)
        raise ConfigError(f"Failed to save config to {path}: {e}") from e


def _load_section(cls: type[_T], data: object, name: str) -> _T:
    """Load a dataclass section from a dict, ignoring unknown keys."""
    if not isinstance(data, dict):
        raise ConfigError(f"[{name}] must be a table, got {type(data).__name__}")
    known_fields = {f.name for f in cls.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered = {k: v for k, v in data.items() if k in known_fields}
    try:
        return cls(**filtered)
    except TypeError as e:
        raise ConfigError(f"Invalid [{name}] section: {e}") from e


def _validate(config: QuireConfig) -> None:
    if config.build.workers < 1:
        raise ConfigError(f"build.workers must be at least 1, got {config.build.workers}")
    if config.watch.debounce_ms < 0:
        raise ConfigError(f"watch.debounce_ms must not be negative, got {config.watch.debounce_ms}")
    if not config.site.location.startswith("/") and "://" not in config.site.location:
        raise ConfigError(f"site.location must be a path or URL, got {config.site.location!r}")


def load_config(path: Path) -> QuireConfig:
    """Load configuration from a TOML file.

    Missing sections or keys get default values.
    """
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        raw = path.read_bytes()
        data = tomllib.loads(raw.decode("utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
        logger.error("Failed to load config from %s: %s", path, e)
        raise ConfigError(f"Failed to load config from {path}: {e}") from e

    config = QuireConfig()
    for name, cls in _SECTIONS.items():
        if name in data:
            setattr(config, name, _load_section(cls, data[name], name))

    if "data" in data:
        if not isinstance(data["data"], dict):
            raise ConfigError("[data] must be a table")
        config.data = dict(data["data"])

    _validate(config)
    logger.info("Loaded config from %s", path)
    return config
