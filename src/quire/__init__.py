"""quire — incremental multi-engine static site builder."""

__version__ = "0.3.0"
