"""
Storage key generation and duration helpers.

Keys look like ``videos/1718000000000-9f86d081884c7d65.mp4``: a folder, a
millisecond timestamp and a 64-bit random token. The token is what keeps
keys unique; the timestamp only makes listings sort by upload time.
Nothing in a key is derived from the client's videoId, so two unrelated
uploads can never land on the same blob.
"""

import re
import secrets
import time
from typing import Optional

# 8 bytes -> 16 hex chars. Birthday bound for a collision within the same
# millisecond is ~2^32 keys, far beyond any realistic upload rate.
TOKEN_BYTES = 8

DEFAULT_EXTENSION = "bin"

MIME_EXTENSIONS = {
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/ogg": "ogv",
    "video/quicktime": "mov",
    "video/x-msvideo": "avi",
    "video/x-matroska": "mkv",
    "video/3gpp": "3gp",
    "video/3gpp2": "3g2",
    "image/jpeg": "jpg",
}

_DURATION_PATTERN = re.compile(r"^(\d+):(\d{1,2})(?::(\d{1,2}))?$")


def new_key(folder: str, extension: str, suffix: str = "") -> str:
    """
    Build a fresh storage key under ``folder``.

    Args:
        folder: Key prefix without trailing slash (e.g. "videos")
        extension: File extension, with or without a leading dot
        suffix: Optional tag appended after the token (e.g. "-cover")
    """
    ext = extension.lstrip(".").lower() or DEFAULT_EXTENSION
    timestamp = int(time.time() * 1000)
    token = secrets.token_hex(TOKEN_BYTES)
    return f"{folder.rstrip('/')}/{timestamp}-{token}{suffix}.{ext}"


def extension_for(filename: Optional[str], mime_type: Optional[str] = None) -> str:
    """Pick a file extension from the original filename, else the mime type."""
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[-1].strip().lower()
        if ext and ext.isalnum():
            return ext
    if mime_type:
        return MIME_EXTENSIONS.get(mime_type.lower(), DEFAULT_EXTENSION)
    return DEFAULT_EXTENSION


def parse_duration(value: Optional[str]) -> int:
    """
    Parse "mm:ss" or "hh:mm:ss" into whole seconds.

    Anything that doesn't match (empty, None, garbage, out-of-range
    minutes/seconds) is 0. Duration is informational, so a bad value must
    never fail an upload.
    """
    if not value:
        return 0

    match = _DURATION_PATTERN.match(value.strip())
    if not match:
        return 0

    first, second, third = match.groups()
    if third is None:
        minutes, seconds = int(first), int(second)
        if seconds >= 60:
            return 0
        return minutes * 60 + seconds

    hours, minutes, seconds = int(first), int(second), int(third)
    if minutes >= 60 or seconds >= 60:
        return 0
    return hours * 3600 + minutes * 60 + seconds


def format_duration(seconds: Optional[float]) -> str:
    """Format seconds as "m:ss", or "h:mm:ss" once past an hour."""
    if not seconds or seconds <= 0:
        return "0:00"

    total = int(round(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)

    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"
