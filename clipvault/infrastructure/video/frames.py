"""
Cover-frame extraction using FFmpeg.

FFmpeg works on file paths, so each call writes the uploaded bytes into a
private temporary directory, runs ffmpeg/ffprobe against it and reads the
result back. The child process is killed and reaped before the directory
is removed, on every exit path: decode failure, timeout or cancellation.
Nothing piles up on local disk and no ffmpeg outlives its request.

Duration probing is best-effort: if ffprobe can't read the file the
upload still succeeds with a duration of 0.
"""

import asyncio
import io
import json
import logging
import os
import subprocess
import tempfile
from typing import Protocol

from ...core.ingest.errors import DecodeError
from ...core.ingest.keys import format_duration

logger = logging.getLogger(__name__)

DEFAULT_MAX_WIDTH = 1280


class FrameExtractor(Protocol):
    """Protocol for turning a video buffer into a still image."""

    async def extract_frame(self, video_data: bytes, at_timestamp: str = "0") -> bytes:
        """Return one JPEG frame taken at ``at_timestamp``."""
        ...

    async def probe_duration(self, video_data: bytes) -> str:
        """Return the duration as "m:ss"/"h:mm:ss", or "" if unknown."""
        ...


class FFmpegFrameExtractor:
    """Frame extractor backed by the ffmpeg/ffprobe binaries."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        max_width: int = DEFAULT_MAX_WIDTH,
        timeout_seconds: float = 30.0,
    ) -> None:
        """
        Args:
            ffmpeg_path: Path to ffmpeg binary (default assumes it's in PATH)
            ffprobe_path: Path to ffprobe binary
            max_width: Frames wider than this are scaled down, keeping aspect
            timeout_seconds: Per-invocation limit for ffmpeg and ffprobe
        """
        self._ffmpeg = ffmpeg_path
        self._ffprobe = ffprobe_path
        self._max_width = max_width
        self._timeout = timeout_seconds

        try:
            result = subprocess.run(
                [self._ffmpeg, "-version"],
                capture_output=True,
                text=True,
                timeout=5,
            )
            if result.returncode != 0:
                raise RuntimeError("FFmpeg not working properly")
            logger.info("FFmpeg frame extractor initialized")
        except FileNotFoundError:
            raise RuntimeError(
                "FFmpeg not found. Install with: apt-get install ffmpeg"
            )

    async def extract_frame(self, video_data: bytes, at_timestamp: str = "0") -> bytes:
        """
        Extract a single JPEG frame.

        -ss goes before -i for fast input seeking. The scale filter only
        ever shrinks: min(max_width, iw) keeps small videos at native size,
        and -2 keeps the height even, which the mjpeg encoder needs.
        """
        if not video_data:
            raise DecodeError("Empty video buffer")

        with tempfile.TemporaryDirectory(prefix="clipvault-") as work_dir:
            video_path = os.path.join(work_dir, "input")
            frame_path = os.path.join(work_dir, "frame.jpg")

            with open(video_path, "wb") as f:
                f.write(video_data)

            cmd = [
                self._ffmpeg,
                "-v", "error",
                "-ss", str(at_timestamp),
                "-i", video_path,
                "-frames:v", "1",
                "-vf", f"scale='min({self._max_width},iw)':-2",
                "-q:v", "2",
                "-y",
                frame_path,
            ]

            try:
                result = await self._exec(cmd)
            except subprocess.TimeoutExpired as e:
                raise DecodeError(f"Frame extraction timed out after {self._timeout}s") from e

            if result.returncode != 0 or not os.path.exists(frame_path):
                stderr = result.stderr.decode(errors="replace").strip()
                logger.warning(
                    "Frame extraction failed",
                    extra={"timestamp": at_timestamp, "stderr": stderr[-500:]}
                )
                raise DecodeError(f"Could not extract frame at {at_timestamp}s: {stderr[-200:]}")

            with open(frame_path, "rb") as f:
                frame_data = f.read()

        if not frame_data:
            raise DecodeError(f"FFmpeg produced an empty frame at {at_timestamp}s")

        logger.debug(
            "Extracted frame",
            extra={"timestamp": at_timestamp, "size_bytes": len(frame_data)}
        )
        return frame_data

    async def probe_duration(self, video_data: bytes) -> str:
        """
        Read the duration with ffprobe.

        Prefers format.duration and falls back to the first stream that
        reports one. Any failure is logged and reported as "".
        """
        if not video_data:
            return ""

        with tempfile.TemporaryDirectory(prefix="clipvault-") as work_dir:
            video_path = os.path.join(work_dir, "input")
            with open(video_path, "wb") as f:
                f.write(video_data)

            cmd = [
                self._ffprobe,
                "-v", "quiet",
                "-print_format", "json",
                "-show_format",
                "-show_streams",
                video_path,
            ]

            try:
                result = await self._exec(cmd, text=True)
            except subprocess.TimeoutExpired:
                logger.warning("FFprobe timed out while reading duration")
                return ""

        if result.returncode != 0:
            logger.warning("FFprobe failed", extra={"stderr": result.stderr[-500:]})
            return ""

        try:
            info = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            logger.warning("FFprobe returned invalid JSON")
            return ""

        duration = _as_float(info.get("format", {}).get("duration"))
        if not duration:
            for stream in info.get("streams", []):
                duration = _as_float(stream.get("duration"))
                if duration:
                    break

        return format_duration(duration) if duration else ""

    async def _exec(self, cmd: list[str], text: bool = False) -> subprocess.CompletedProcess:
        """
        Run one ffmpeg/ffprobe invocation, waiting in a worker thread.

        The child is killed and reaped on every exit path (timeout, error,
        cancellation of the awaiting task) before control returns, so the
        caller's temp directory is never removed while it is still writing.

        Raises:
            subprocess.TimeoutExpired: the child ran past timeout_seconds
        """
        process = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=text,
        )
        try:
            stdout, stderr = await asyncio.to_thread(
                process.communicate, timeout=self._timeout
            )
        finally:
            if process.poll() is None:
                process.kill()
                process.wait()

        return subprocess.CompletedProcess(cmd, process.returncode, stdout, stderr)


def _as_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class MockFrameExtractor:
    """
    Frame extractor for local development without FFmpeg.

    Renders a flat-colour JPEG with Pillow so the resizer downstream gets a
    real image. Empty input still fails, mirroring what FFmpeg would do.
    """

    def __init__(self, width: int = 640, height: int = 360, duration: str = "0:30") -> None:
        self._size = (width, height)
        self._duration = duration
        logger.info("Initialized mock frame extractor")

    async def extract_frame(self, video_data: bytes, at_timestamp: str = "0") -> bytes:
        from PIL import Image

        if not video_data:
            raise DecodeError("Empty video buffer")

        buffer = io.BytesIO()
        Image.new("RGB", self._size, color=(32, 96, 160)).save(buffer, format="JPEG", quality=90)
        return buffer.getvalue()

    async def probe_duration(self, video_data: bytes) -> str:
        return self._duration


def create_frame_extractor(
    mock_mode: bool = False,
    ffmpeg_path: str = "ffmpeg",
    ffprobe_path: str = "ffprobe",
    max_width: int = DEFAULT_MAX_WIDTH,
    timeout_seconds: float = 30.0,
) -> FrameExtractor:
    """
    Factory function for frame extractors.

    Args:
        mock_mode: If True, return the Pillow-based mock (no FFmpeg required)

    Returns:
        FrameExtractor implementation
    """
    if mock_mode:
        return MockFrameExtractor()

    return FFmpegFrameExtractor(
        ffmpeg_path=ffmpeg_path,
        ffprobe_path=ffprobe_path,
        max_width=max_width,
        timeout_seconds=timeout_seconds,
    )
