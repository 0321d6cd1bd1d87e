from __future__ import annotations

import logging
from typing import Any

from viral_clips.config import SamplingSettings
from viral_clips.errors import AnalysisCancelled, FrameExtractionError, ValidationError
from viral_clips.models import CancelToken, SampledFrame, VideoSource

logger = logging.getLogger(__name__)


def compute_frame_timestamps(duration: float, frame_count: int) -> list[float]:
    """Evenly spaced timestamps that skip the first and last interval."""

    if duration <= 0:
        raise ValidationError("Video duration must be positive to sample frames.")
    if frame_count < 1:
        raise ValidationError("frame_count must be at least 1.")

    interval = duration / (frame_count + 1)
    return [interval * step for step in range(1, frame_count + 1)]


def sample_frames(
    source: VideoSource,
    frame_count: int | None = None,
    settings: SamplingSettings | None = None,
    *,
    cancel_event: CancelToken | None = None,
    cv2_module: Any | None = None,
) -> list[SampledFrame]:
    """Seek, resize to the fixed target resolution and JPEG-encode each frame.

    Every seek gets exactly one retry nudged toward the middle of the video.
    Any second failure aborts the whole sampling run.
    """

    settings = settings or SamplingSettings()
    resolved_count = frame_count if frame_count is not None else settings.frame_count
    timestamps = compute_frame_timestamps(source.duration, resolved_count)

    if cv2_module is None:
        import cv2 as cv2_module

    capture = cv2_module.VideoCapture(str(source.path))
    if not capture.isOpened():
        raise FrameExtractionError(f"Unable to open video for frame sampling: {source.path}")

    frames: list[SampledFrame] = []
    try:
        for timestamp in timestamps:
            if cancel_event is not None and cancel_event.is_set():
                raise AnalysisCancelled("Frame extraction was cancelled.")

            image = _read_frame_with_retry(
                capture,
                timestamp=timestamp,
                duration=source.duration,
                retry_offset=settings.seek_retry_offset_seconds,
                cv2_module=cv2_module,
            )
            resized = _resize_to_target(
                image,
                target_width=settings.target_width,
                target_height=settings.target_height,
                cv2_module=cv2_module,
            )
            frames.append(
                SampledFrame(
                    timestamp=timestamp,
                    image=_encode_jpeg(resized, settings.jpeg_quality, timestamp, cv2_module),
                    width=settings.target_width,
                    height=settings.target_height,
                )
            )
            logger.debug("Captured frame %d/%d at %.2fs", len(frames), len(timestamps), timestamp)
    finally:
        capture.release()

    logger.info("Extracted %d frames from %s", len(frames), source.path)
    return frames


def _read_frame_with_retry(
    capture: Any,
    *,
    timestamp: float,
    duration: float,
    retry_offset: float,
    cv2_module: Any,
) -> Any:
    frame = _read_frame_at(capture, timestamp, cv2_module)
    if frame is not None:
        return frame

    retry_timestamp = timestamp - retry_offset if timestamp > duration / 2 else timestamp + retry_offset
    retry_timestamp = min(max(retry_timestamp, 0.0), duration)
    logger.warning("Seek to %.3fs failed; retrying at %.3fs", timestamp, retry_timestamp)

    frame = _read_frame_at(capture, retry_timestamp, cv2_module)
    if frame is None:
        raise FrameExtractionError(
            f"Failed to extract frame at {timestamp:.3f}s (retry at {retry_timestamp:.3f}s also failed)",
            timestamp=timestamp,
        )
    return frame


def _read_frame_at(capture: Any, timestamp: float, cv2_module: Any) -> Any | None:
    capture.set(cv2_module.CAP_PROP_POS_MSEC, timestamp * 1000.0)
    ok, frame = capture.read()
    if not ok or frame is None:
        return None
    return frame


def _resize_to_target(frame: Any, *, target_width: int, target_height: int, cv2_module: Any) -> Any:
    height, width = frame.shape[:2]
    if width == target_width and height == target_height:
        return frame

    downscaling = width > target_width or height > target_height
    interpolation = cv2_module.INTER_AREA if downscaling else cv2_module.INTER_CUBIC
    return cv2_module.resize(frame, (target_width, target_height), interpolation=interpolation)


def _encode_jpeg(frame: Any, quality: int, timestamp: float, cv2_module: Any) -> bytes:
    ok, buffer = cv2_module.imencode(".jpg", frame, [int(cv2_module.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise FrameExtractionError(f"Failed to encode frame at {timestamp:.3f}s", timestamp=timestamp)
    return buffer.tobytes()
