from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from viral_clips.errors import ValidationError

ContentType = Literal["monetization", "engagement", "action", "comedy", "emotional", "educational"]
Platform = Literal["tiktok", "youtube-shorts", "instagram-reels", "youtube", "twitter", "custom"]


@dataclass(frozen=True, slots=True)
class ContentTypeConfig:
    name: str
    description: str
    keywords: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class PlatformConfig:
    name: str
    aspect_ratio: str
    min_duration: float
    max_duration: float
    typical_duration: str


CONTENT_TYPES: dict[str, ContentTypeConfig] = {
    "monetization": ContentTypeConfig(
        name="High Monetization",
        description="Ad-friendly, brand-safe content for maximum revenue",
        keywords=("brand-safe", "advertiser-friendly", "monetizable", "clean content", "professional"),
    ),
    "engagement": ContentTypeConfig(
        name="User Engagement",
        description="Content that drives comments, shares, and reactions",
        keywords=("shareable", "discussion-worthy", "controversial", "relatable", "interactive"),
    ),
    "action": ContentTypeConfig(
        name="Action & Energy",
        description="High-energy scenes with movement and excitement",
        keywords=("action-packed", "dynamic", "fast-paced", "exciting", "intense"),
    ),
    "comedy": ContentTypeConfig(
        name="Comedy & Humor",
        description="Funny moments, memes, and comedic timing",
        keywords=("funny", "hilarious", "meme-worthy", "comedic", "entertaining"),
    ),
    "emotional": ContentTypeConfig(
        name="Emotional Moments",
        description="Heartwarming, inspiring, or touching content",
        keywords=("emotional", "heartwarming", "inspiring", "touching", "meaningful"),
    ),
    "educational": ContentTypeConfig(
        name="Educational",
        description="Informative content, tutorials, and how-tos",
        keywords=("educational", "informative", "tutorial", "how-to", "learning"),
    ),
}

PLATFORMS: dict[str, PlatformConfig] = {
    "tiktok": PlatformConfig("TikTok", "9:16", 5, 60, "15-30s"),
    "youtube-shorts": PlatformConfig("YouTube Shorts", "9:16", 5, 60, "30-45s"),
    "instagram-reels": PlatformConfig("Instagram Reels", "9:16", 5, 90, "15-30s"),
    "youtube": PlatformConfig("YouTube", "16:9", 30, 600, "2-5 minutes"),
    "twitter": PlatformConfig("Twitter/X", "16:9", 5, 140, "30-45s"),
    "custom": PlatformConfig("Custom", "any", 5, 300, "varies"),
}


class AnalysisSettings(BaseModel):
    """Per-request options; platform presets fill in omitted duration bounds."""

    content_types: set[ContentType] = Field(default_factory=lambda: {"engagement"})
    platform: Platform = "tiktok"
    min_duration: float | None = None
    max_duration: float | None = None
    include_audio: bool = True
    frame_count: int | None = None
    custom_prompt: str | None = None

    @model_validator(mode="after")
    def _apply_platform_bounds(self) -> AnalysisSettings:
        preset = PLATFORMS[self.platform]
        if self.min_duration is None:
            self.min_duration = float(preset.min_duration)
        if self.max_duration is None:
            self.max_duration = float(preset.max_duration)

        if self.min_duration < 0:
            raise ValueError("min_duration must be non-negative.")
        if self.min_duration > self.max_duration:
            raise ValueError(
                f"min_duration ({self.min_duration}) must not exceed max_duration ({self.max_duration})."
            )
        if self.frame_count is not None and self.frame_count < 1:
            raise ValueError("frame_count must be at least 1.")
        return self

    @property
    def platform_config(self) -> PlatformConfig:
        return PLATFORMS[self.platform]

    @property
    def target_aspect_ratio(self) -> str:
        return self.platform_config.aspect_ratio


def resolve_analysis_settings(raw: AnalysisSettings | dict[str, Any] | None = None) -> AnalysisSettings:
    """Validate caller options, raising the domain ValidationError on bad input."""

    if isinstance(raw, AnalysisSettings):
        return raw

    try:
        return AnalysisSettings.model_validate(raw or {})
    except PydanticValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'settings'}: {error['msg']}"
            for error in exc.errors()
        )
        raise ValidationError(f"Invalid analysis settings: {details}") from exc
