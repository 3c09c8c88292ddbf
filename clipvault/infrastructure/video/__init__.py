"""
Video processing infrastructure.

Cover-frame extraction and duration probing with FFmpeg.
"""

from .frames import (
    FFmpegFrameExtractor,
    FrameExtractor,
    MockFrameExtractor,
    create_frame_extractor,
)

__all__ = [
    "FFmpegFrameExtractor",
    "FrameExtractor",
    "MockFrameExtractor",
    "create_frame_extractor",
]
