"""Launchpad - self-updating application launcher."""

__version__ = "0.1.0"
