"""Flatten a directory into a single Markdown report (tree + file contents)."""

__version__ = "0.1.0"
