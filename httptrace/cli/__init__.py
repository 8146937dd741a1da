"""Command-line interface for http-trace."""

from .main import app, main


__all__ = ["app", "main"]
