"""Concurrent novel crawler that assembles chapters into EPUB bundles."""

__version__ = "0.3.0"
