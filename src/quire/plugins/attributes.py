"""``attr`` and ``class`` helpers for building HTML attributes in templates.

    {{ {"id": "main", "hidden": true, "class": ["a", {"b": false}]} | attr }}
    → id="main" hidden class="a"
"""

from __future__ import annotations

from html import escape
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from quire.site import Site

__all__ = ["attr", "class_name", "install"]


def _add_class(classes: dict[str, None], name: Any) -> None:
    if not name:
        return
    if isinstance(name, str):
        classes[name] = None
    elif isinstance(name, (list, tuple, set)):
        for value in name:
            _add_class(classes, value)
    elif isinstance(name, dict):
        for key, value in name.items():
            if value:
                classes[str(key)] = None


def _add_attributes(attributes: dict[str, Any], value: Any, valid: tuple[str, ...]) -> None:
    if not value:
        return
    if isinstance(value, str):
        if not valid or value in valid:
            attributes[value] = True
        return
    if isinstance(value, (list, tuple)):
        for item in value:
            _add_attributes(attributes, item, valid)
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if valid and key not in valid:
                continue
            if key == "class":
                classes = attributes.get("class")
                if not isinstance(classes, dict):
                    classes = {}
                _add_class(classes, item)
                attributes["class"] = classes
            else:
                attributes[key] = item


def attr(values: Any, *valid_names: str) -> str:
    """Serialize a mapping (or list of names) into HTML attributes."""
    attributes: dict[str, Any] = {}
    _add_attributes(attributes, values, valid_names)

    parts: list[str] = []
    for name, value in attributes.items():
        if value is None or value is False:
            continue
        if value is True:
            parts.append(name)
        elif isinstance(value, dict):
            if value:
                parts.append(f'{name}="{escape(" ".join(value))}"')
        else:
            parts.append(f'{name}="{escape(str(value))}"')
    return " ".join(parts)


def class_name(*names: Any) -> str:
    """Join class names from strings, lists and ``{name: condition}`` maps."""
    classes: dict[str, None] = {}
    for name in names:
        _add_class(classes, name)
    return " ".join(classes)


def install(site: Site, options: dict[str, Any]) -> None:
    site.filter("attr", attr)
    site.filter("class", class_name)
