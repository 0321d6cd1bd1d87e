from __future__ import annotations

from collections.abc import Sequence

from viral_clips.analysis_settings import CONTENT_TYPES, AnalysisSettings
from viral_clips.models import AudioProfile, SampledFrame

RESPONSE_SCHEMA_EXAMPLE = """{
  "clips": [
    {
      "title": "Short catchy title",
      "reason": "Compelling reason for viral potential",
      "startTime": 15,
      "endTime": 45,
      "viralScore": {"overall": 85, "engagement": 80, "shareability": 90, "retention": 75, "trend": 95},
      "scoreExplanation": "Why these scores were given."
    }
  ]
}"""


def describe_audio_profile(profile: AudioProfile | None) -> str:
    """Render the audio profile as prompt context (empty when audio was skipped)."""

    if profile is None:
        return ""

    if profile.has_music:
        tempo = f"tempo: {profile.tempo:.0f} BPM" if profile.tempo is not None else "tempo unknown"
        music_info = f"Music detected (intensity: {profile.music_intensity * 100:.0f}%, {tempo})"
    else:
        music_info = "No music detected"

    if profile.emotional_peaks:
        peaks = ", ".join(f"{timestamp:.1f}s" for timestamp in profile.emotional_peaks)
        peak_info = f"Emotional peaks at: {peaks}"
    else:
        peak_info = "No emotional peaks detected"

    volume = profile.volume
    return "\n".join(
        [
            "AUDIO ANALYSIS DATA:",
            music_info,
            f"Speech coverage: {profile.speech_coverage * 100:.0f}%",
            peak_info,
            (
                f"Volume: avg {volume.average * 100:.0f}%, peak {volume.peak * 100:.0f}%, "
                f"dynamic range {volume.dynamic * 100:.0f}%"
            ),
        ]
    )


def build_analysis_prompt(
    frames: Sequence[SampledFrame],
    audio_profile: AudioProfile | None,
    settings: AnalysisSettings,
    *,
    duration: float,
    max_clips: int = 4,
) -> str:
    content_types = ", ".join(
        f"{CONTENT_TYPES[name].name} ({', '.join(CONTENT_TYPES[name].keywords)})"
        for name in sorted(settings.content_types)
    )
    platform = settings.platform_config
    frame_times = ", ".join(f"{frame.timestamp:.1f}s" for frame in frames)

    sections = [
        (
            f"You are a viral content strategist. The video is {round(duration)} seconds long and "
            f"{len(frames)} frames were sampled at: {frame_times}."
        ),
        f"Focus on clips that match these content types: {content_types}.",
        f"The clips will be used for {platform.name} ({platform.aspect_ratio} aspect ratio, typical length {platform.typical_duration}).",
        f"Each clip MUST be between {settings.min_duration:g} and {settings.max_duration:g} seconds long.",
    ]

    audio_description = describe_audio_profile(audio_profile)
    if audio_description:
        sections.append(audio_description)
    if settings.custom_prompt:
        sections.append(settings.custom_prompt.strip())

    sections.append(
        f"Identify up to {max_clips} potentially viral clips. Score each on overall, engagement, "
        "shareability, retention and trend (0-100) and explain the scores in 2-3 sentences."
    )
    sections.append(f"Return ONLY a JSON object with this exact structure:\n{RESPONSE_SCHEMA_EXAMPLE}")
    return "\n\n".join(sections)
