"""Verified, atomic releases of an edge search index."""

__version__ = "1.0.0"
