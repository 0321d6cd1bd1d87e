from __future__ import annotations

from collections.abc import Iterable

from viral_clips.errors import ValidationError
from viral_clips.models import CropRegion

DEFAULT_ASPECT_RATIOS = ("16:9", "9:16", "1:1")


def parse_aspect_ratio(tag: str) -> float:
    """Turn a ``"w:h"`` tag into its width/height ratio."""

    parts = tag.split(":")
    if len(parts) != 2:
        raise ValidationError(f"Aspect ratio must look like 'w:h', got {tag!r}.")
    try:
        ratio_width, ratio_height = float(parts[0]), float(parts[1])
    except ValueError as exc:
        raise ValidationError(f"Aspect ratio must look like 'w:h', got {tag!r}.") from exc
    if ratio_width <= 0 or ratio_height <= 0:
        raise ValidationError(f"Aspect ratio components must be positive, got {tag!r}.")
    return ratio_width / ratio_height


def plan_crop_region(video_width: int, video_height: int, tag: str) -> CropRegion:
    """Centered crop for one target ratio; keeps the full extent of the limiting axis."""

    if video_width <= 0 or video_height <= 0:
        raise ValidationError("Video dimensions must be positive to plan crops.")

    target_ratio = parse_aspect_ratio(tag)
    source_ratio = video_width / video_height

    if source_ratio > target_ratio:
        width = video_height * target_ratio
        return CropRegion(x=(video_width - width) / 2, y=0.0, width=width, height=float(video_height))

    height = video_width / target_ratio
    return CropRegion(x=0.0, y=(video_height - height) / 2, width=float(video_width), height=height)


def plan_crop_regions(
    video_width: int,
    video_height: int,
    aspect_ratios: Iterable[str] = DEFAULT_ASPECT_RATIOS,
) -> dict[str, CropRegion]:
    return {tag: plan_crop_region(video_width, video_height, tag) for tag in aspect_ratios}
