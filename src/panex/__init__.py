"""panex: multi-pane file browser."""

from panex.version import __version__

__all__ = ["__version__"]
