"""Trace the phases of a single HTTP request."""

from ._version import __version__


__all__ = ["__version__"]
