"""Geotagging camera flow: location fix, capture, watermark, review."""

__version__ = "0.1.0"
