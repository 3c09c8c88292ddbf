"""
Unit tests for thumbnail generation and the mock frame extractor.

Images are generated in memory with Pillow; no FFmpeg required.
"""

import io
import threading

import pytest
from PIL import Image

from clipvault.core.ingest.errors import DecodeError
from clipvault.infrastructure.images.resizer import PillowImageResizer
from clipvault.infrastructure.video.frames import MockFrameExtractor


def make_jpeg(width: int, height: int, color=(200, 40, 40)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=color).save(buffer, format="JPEG")
    return buffer.getvalue()


def make_png_rgba(width: int, height: int) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", (width, height), color=(0, 0, 0, 0)).save(buffer, format="PNG")
    return buffer.getvalue()


class TestPillowImageResizer:
    """Tests for cover-crop thumbnailing."""

    @pytest.mark.parametrize("source_size", [(1920, 1080), (1080, 1920), (100, 100), (4000, 300)])
    def test_output_is_exactly_target_size(self, source_size):
        """Whatever the source aspect ratio, the thumbnail fills 320x180 exactly."""
        resizer = PillowImageResizer()
        out = resizer.resize(make_jpeg(*source_size), 320, 180)

        with Image.open(io.BytesIO(out)) as img:
            assert img.size == (320, 180)
            assert img.format == "JPEG"

    def test_same_input_gives_identical_bytes(self):
        """Resizing is deterministic, byte for byte."""
        resizer = PillowImageResizer()
        source = make_jpeg(1280, 720)

        assert resizer.resize(source, 320, 180) == resizer.resize(source, 320, 180)

    def test_transparent_input_is_flattened_to_rgb(self):
        out = PillowImageResizer().resize(make_png_rgba(640, 360), 320, 180)

        with Image.open(io.BytesIO(out)) as img:
            assert img.mode == "RGB"

    def test_garbage_input_raises_decode_error(self):
        with pytest.raises(DecodeError):
            PillowImageResizer().resize(b"definitely not an image", 320, 180)

    def test_non_positive_size_is_rejected(self):
        with pytest.raises(ValueError, match="Invalid thumbnail size"):
            PillowImageResizer().resize(make_jpeg(64, 64), 0, 180)


class TestMockFrameExtractor:
    """Tests for the FFmpeg-free extractor used in mock mode."""

    @pytest.mark.asyncio
    async def test_returns_decodable_jpeg(self):
        frame = await MockFrameExtractor(width=640, height=360).extract_frame(b"\x00\x01")

        with Image.open(io.BytesIO(frame)) as img:
            assert img.size == (640, 360)

    @pytest.mark.asyncio
    async def test_empty_buffer_raises_decode_error(self):
        with pytest.raises(DecodeError):
            await MockFrameExtractor().extract_frame(b"")

    @pytest.mark.asyncio
    async def test_probe_duration(self):
        assert await MockFrameExtractor(duration="1:05").probe_duration(b"x") == "1:05"


class FakeProcess:
    """Popen double. Output is produced when communicate() is called."""

    def __init__(self, owner: "FakeFFmpeg", cmd, text: bool) -> None:
        self._owner = owner
        self._cmd = cmd
        self._text = text
        self._killed = threading.Event()
        self.returncode = None

    def communicate(self, timeout=None):
        import json
        import subprocess

        cmd = self._cmd
        is_probe = cmd[0] == "ffprobe"
        self._owner.inputs.append(cmd[-1] if is_probe else cmd[cmd.index("-i") + 1])

        if self._owner.hang:
            self._owner.started.set()
            if not self._killed.wait(timeout):
                raise subprocess.TimeoutExpired(cmd, timeout)
            self.returncode = -9
            return ("", "") if self._text else (b"", b"")

        if is_probe:
            self.returncode = 0
            return json.dumps(self._owner.probe_output), ""

        if self._owner.fail_extract:
            self.returncode = 1
            return b"", b"moov atom not found"

        with open(cmd[-1], "wb") as f:
            f.write(make_jpeg(1280, 720))
        self.returncode = 0
        return b"", b""

    def poll(self):
        return self.returncode

    def kill(self):
        self._owner.killed += 1
        self._killed.set()
        self.returncode = -9

    def wait(self, timeout=None):
        return self.returncode


class FakeFFmpeg:
    """
    Stands in for the ffmpeg/ffprobe binaries.

    ``run`` answers the ``-version`` check; ``popen`` hands out FakeProcess
    objects that write a JPEG for ffmpeg or return canned ffprobe JSON.
    With ``hang`` set, either binary blocks until killed. Remembers the input
    paths it saw so tests can check the temp files were cleaned up.
    """

    def __init__(self, probe_output: dict | None = None, fail_extract: bool = False) -> None:
        self.probe_output = probe_output or {"format": {"duration": "630.2"}}
        self.fail_extract = fail_extract
        self.hang = False
        self.started = threading.Event()
        self.killed = 0
        self.inputs: list[str] = []

    def run(self, cmd, capture_output=True, text=False, timeout=None):
        import subprocess

        return subprocess.CompletedProcess(cmd, 0, stdout="ffmpeg version 6.1", stderr="")

    def popen(self, cmd, stdout=None, stderr=None, text=False):
        return FakeProcess(self, cmd, text)


class TestFFmpegFrameExtractor:
    """Tests for the FFmpeg-backed extractor with the binaries faked out."""

    @pytest.fixture
    def fake(self, monkeypatch):
        from clipvault.infrastructure.video import frames

        fake = FakeFFmpeg()
        monkeypatch.setattr(frames.subprocess, "run", fake.run)
        monkeypatch.setattr(frames.subprocess, "Popen", fake.popen)
        return fake

    @pytest.mark.asyncio
    async def test_extract_frame_returns_jpeg_and_cleans_up(self, fake):
        import os
        from clipvault.infrastructure.video.frames import FFmpegFrameExtractor

        frame = await FFmpegFrameExtractor(max_width=1280).extract_frame(b"fake video")

        with Image.open(io.BytesIO(frame)) as img:
            assert img.format == "JPEG"
        assert fake.inputs and not os.path.exists(fake.inputs[0])

    @pytest.mark.asyncio
    async def test_failed_extraction_raises_decode_error_and_cleans_up(self, fake):
        import os
        from clipvault.infrastructure.video.frames import FFmpegFrameExtractor

        fake.fail_extract = True

        with pytest.raises(DecodeError, match="moov atom"):
            await FFmpegFrameExtractor().extract_frame(b"corrupt")
        assert not os.path.exists(fake.inputs[0])

    @pytest.mark.asyncio
    async def test_probe_duration_formats_seconds(self, fake):
        from clipvault.infrastructure.video.frames import FFmpegFrameExtractor

        assert await FFmpegFrameExtractor().probe_duration(b"video") == "10:30"

    @pytest.mark.asyncio
    async def test_probe_duration_falls_back_to_stream(self, fake):
        from clipvault.infrastructure.video.frames import FFmpegFrameExtractor

        fake.probe_output = {"format": {}, "streams": [{"codec_type": "audio"}, {"duration": "4230"}]}

        assert await FFmpegFrameExtractor().probe_duration(b"video") == "1:10:30"

    @pytest.mark.asyncio
    async def test_probe_duration_unknown_is_empty(self, fake):
        from clipvault.infrastructure.video.frames import FFmpegFrameExtractor

        fake.probe_output = {"format": {"duration": "N/A"}}

        assert await FFmpegFrameExtractor().probe_duration(b"video") == ""

    @pytest.mark.asyncio
    async def test_cancelled_extraction_kills_ffmpeg_before_cleanup(self, fake):
        """The child is killed and the scratch dir removed when the caller cancels."""
        import asyncio
        import os
        from clipvault.infrastructure.video.frames import FFmpegFrameExtractor

        fake.hang = True
        task = asyncio.create_task(FFmpegFrameExtractor(timeout_seconds=5).extract_frame(b"video"))

        while not fake.started.is_set():
            await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert fake.killed == 1
        assert not os.path.exists(os.path.dirname(fake.inputs[0]))

    @pytest.mark.asyncio
    async def test_timeout_kills_ffmpeg_and_raises_decode_error(self, fake):
        import os
        from clipvault.infrastructure.video.frames import FFmpegFrameExtractor

        fake.hang = True

        with pytest.raises(DecodeError, match="timed out"):
            await FFmpegFrameExtractor(timeout_seconds=0.05).extract_frame(b"video")

        assert fake.killed == 1
        assert not os.path.exists(os.path.dirname(fake.inputs[0]))

    @pytest.mark.asyncio
    async def test_probe_timeout_kills_ffprobe_and_reports_unknown(self, fake):
        import os
        from clipvault.infrastructure.video.frames import FFmpegFrameExtractor

        fake.hang = True

        assert await FFmpegFrameExtractor(timeout_seconds=0.05).probe_duration(b"video") == ""
        assert fake.killed == 1
        assert not os.path.exists(os.path.dirname(fake.inputs[0]))
