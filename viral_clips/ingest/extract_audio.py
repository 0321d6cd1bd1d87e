from __future__ import annotations

import logging
import subprocess
from pathlib import Path

import numpy as np

from viral_clips.errors import AudioAnalysisError

logger = logging.getLogger(__name__)


def decode_audio_pcm(video_path: str | Path, target_sample_rate: int = 44100) -> np.ndarray:
    """Decode the first audio stream to mono float32 PCM in [-1, 1]."""

    source_path = Path(video_path)
    command = [
        "ffmpeg",
        "-v",
        "error",
        "-nostdin",
        "-i",
        str(source_path),
        "-map",
        "0:a:0",
        "-vn",
        "-ac",
        "1",
        "-ar",
        str(target_sample_rate),
        "-f",
        "f32le",
        "-c:a",
        "pcm_f32le",
        "pipe:1",
    ]

    try:
        completed = subprocess.run(command, check=True, capture_output=True)
    except FileNotFoundError as exc:
        raise AudioAnalysisError(
            "ffmpeg executable was not found. Install FFmpeg so ffmpeg is available on PATH."
        ) from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or b"").decode("utf-8", errors="replace").strip()
        details = f" ffmpeg stderr: {stderr}" if stderr else ""
        raise AudioAnalysisError(f"ffmpeg failed to decode audio from {source_path}.{details}") from exc

    raw = completed.stdout or b""
    usable = len(raw) - (len(raw) % 4)
    samples = np.frombuffer(raw[:usable], dtype="<f4").astype(np.float32)
    logger.debug("Decoded %d PCM samples at %d Hz from %s", len(samples), target_sample_rate, source_path)
    return np.clip(samples, -1.0, 1.0)
