from __future__ import annotations

import json
import logging
import shutil
import subprocess
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, BinaryIO

from viral_clips.errors import ValidationError
from viral_clips.models import VideoSource

logger = logging.getLogger(__name__)

_SHARED_LIBRARY_MARKERS = ("error while loading shared libraries", "cannot open shared object file")


def probe_video(video_path: str | Path) -> VideoSource:
    """Probe duration, dimensions and audio presence via ffprobe."""

    source_path = Path(video_path).expanduser().resolve()
    if not source_path.exists():
        raise FileNotFoundError(f"Video file not found: {source_path}")

    payload = _run_ffprobe(source_path)
    return _to_video_source(source_path, payload)


@contextmanager
def open_video_source(data: str | Path | bytes | BinaryIO, *, suffix: str = ".mp4") -> Iterator[VideoSource]:
    """Yield a probed VideoSource for a path, raw bytes, or a binary stream.

    Non-path input is spooled to a temporary file because both ffmpeg and
    OpenCV need a seekable file on disk. The file is removed on exit.
    """

    if isinstance(data, (str, Path)):
        yield probe_video(data)
        return

    with tempfile.TemporaryDirectory(prefix="viral_clips_") as tmp_dir:
        spooled_path = Path(tmp_dir) / f"source{suffix}"
        with spooled_path.open("wb") as handle:
            if isinstance(data, (bytes, bytearray, memoryview)):
                handle.write(data)
            else:
                shutil.copyfileobj(data, handle)
        logger.debug("Spooled input stream to %s", spooled_path)
        yield probe_video(spooled_path)


def _run_ffprobe(video_path: Path) -> dict[str, Any]:
    command = [
        "ffprobe",
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(video_path),
    ]

    try:
        completed = subprocess.run(
            command,
            check=True,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as exc:
        raise RuntimeError(
            "ffprobe executable was not found. Install FFmpeg so ffprobe is available on PATH."
        ) from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        if any(marker in stderr for marker in _SHARED_LIBRARY_MARKERS):
            raise RuntimeError(
                "ffprobe is installed but failed to start because required shared libraries are missing. "
                f"ffprobe stderr: {stderr}"
            ) from exc
        details = f" ffprobe stderr: {stderr}" if stderr else ""
        raise RuntimeError(
            f"ffprobe failed while probing media file: {video_path}.{details}"
        ) from exc

    try:
        return json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise RuntimeError("ffprobe returned invalid JSON output.") from exc


def _to_video_source(video_path: Path, payload: dict[str, Any]) -> VideoSource:
    streams = payload.get("streams", [])
    format_entry = payload.get("format", {})

    video_stream = next((stream for stream in streams if stream.get("codec_type") == "video"), None)
    if video_stream is None:
        raise ValidationError(f"No video stream found in {video_path}")

    width = _to_int(video_stream.get("width")) or 0
    height = _to_int(video_stream.get("height")) or 0
    duration = _to_float(format_entry.get("duration")) or _to_float(video_stream.get("duration")) or 0.0

    if width <= 0 or height <= 0:
        raise ValidationError(f"Video stream in {video_path} reports no usable dimensions.")
    if duration <= 0:
        raise ValidationError(f"Video {video_path} reports a non-positive duration.")

    has_audio = any(stream.get("codec_type") == "audio" for stream in streams)
    return VideoSource(path=video_path, duration=duration, width=width, height=height, has_audio=has_audio)


def _to_float(raw_value: Any) -> float | None:
    if raw_value in (None, "N/A", ""):
        return None
    return float(raw_value)


def _to_int(raw_value: Any) -> int | None:
    if raw_value in (None, "N/A", ""):
        return None
    return int(raw_value)
