"""page2svg: replace inline math in HTML5 documents with SVG."""

from .version import __version__

__all__ = ["__version__"]
