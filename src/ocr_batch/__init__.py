"""Batch OCR over a directory tree through a rotating-proxy HTTP client."""

__version__ = "0.1.0"
