"""Letterbox: newsletter intake from feeds and forwarded email."""

__version__ = "0.1.0"
