"""Plugin registry for quire.

Maps plugin names used in ``[plugins] use`` to factories that install the
plugin into a :class:`~quire.site.Site`.
Example: ``registry.install("jinja", site, {"extensions": [".j2"]})``.
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING, Any

from quire.exceptions import PluginError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from quire.site import Site

__all__ = ["PluginRegistry", "default_registry"]

logger = logging.getLogger(__name__)

PluginFactory = Any  # Callable[[Site, dict[str, Any]], None]


class PluginRegistry:
    """Name → plugin factory lookup.

    When ``auto_discover`` is ``True``, the first lookup imports
    ``quire.plugins`` so the built-in plugins register themselves.

    Usage::

        registry = PluginRegistry()
        registry.register("markdown", markdown.install)
        registry.install("markdown", site)
    """

    def __init__(self, *, auto_discover: bool = False) -> None:
        self._factories: dict[str, Callable[..., Any]] = {}
        self._auto_discover = auto_discover
        self._discovered = False

    def register(self, name: str, factory: Callable[..., Any]) -> None:
        """Register a plugin factory.

        Raises:
            PluginError: If a plugin with the same name already exists.
        """
        if name in self._factories:
            raise PluginError(f"Plugin '{name}' already registered")
        self._factories[name] = factory
        logger.debug("Registered plugin %s", name)

    def _ensure_discovered(self) -> None:
        """Lazily import built-in plugin modules on first use."""
        if self._discovered or not self._auto_discover:
            return
        self._discovered = True
        importlib.import_module("quire.plugins")

    def install(self, name: str, site: Site, options: Mapping[str, Any] | None = None) -> None:
        """Install a plugin into ``site``.

        Raises:
            PluginError: If the name is unknown or the factory fails.
        """
        self._ensure_discovered()
        if name not in self._factories:
            raise PluginError(f"Unknown plugin '{name}'. Available: {sorted(self._factories)}")

        logger.info("Installing plugin %s", name)
        try:
            self._factories[name](site, dict(options or {}))
        except PluginError:
            raise
        except Exception as e:
            raise PluginError(f"Plugin '{name}' failed to install: {e}") from e

    def list_plugins(self) -> list[str]:
        self._ensure_discovered()
        return sorted(self._factories)

    def has_plugin(self, name: str) -> bool:
        self._ensure_discovered()
        return name in self._factories


default_registry = PluginRegistry(auto_discover=True)
