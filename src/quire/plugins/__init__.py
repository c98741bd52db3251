"""Built-in plugins; importing this package registers them on ``default_registry``."""

from quire.plugins import attributes, base_path, css, filter_pages, jinja, markdown
from quire.registry import default_registry

__all__ = ["attributes", "base_path", "css", "filter_pages", "jinja", "markdown"]

default_registry.register("jinja", jinja.install)
default_registry.register("markdown", markdown.install)
default_registry.register("attributes", attributes.install)
default_registry.register("css", css.install)
default_registry.register("base_path", base_path.install)
default_registry.register("filter_pages", filter_pages.install)
