"""
Image processing infrastructure.

Pillow-based thumbnail generation for cover frames.
"""

from .resizer import ImageResizer, PillowImageResizer

__all__ = ["ImageResizer", "PillowImageResizer"]
