"""
Image serving package.

This module provides a FastAPI application that serves TIFF source images by
record id, either untouched at `/{id}` or converted to JPEG/PNG at
`/{id}/{type}`.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
