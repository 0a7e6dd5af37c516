"""shopmirror - archive a region/language-partitioned shop catalog and its media."""

from .__version__ import __version__

__all__ = ["__version__"]
