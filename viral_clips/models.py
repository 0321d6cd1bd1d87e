from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, Union

SCORE_AXES = ("overall", "engagement", "shareability", "retention", "trend")


class CancelToken(Protocol):
    """Anything that reports cancellation, such as a threading.Event."""

    def is_set(self) -> bool:
        ...


@dataclass(frozen=True, slots=True)
class VideoSource:
    """Probed description of the input video, created once per request."""

    path: Path
    duration: float
    width: int
    height: int
    has_audio: bool = True


@dataclass(frozen=True, slots=True)
class SampledFrame:
    timestamp: float
    image: bytes
    width: int
    height: int


@dataclass(frozen=True, slots=True)
class AudioSample:
    """One analyser reading; only lives inside the audio extractor."""

    timestamp: float
    rms: float
    frequency_bins: tuple[int, ...]
    speech_score: float
    music_score: float


@dataclass(frozen=True, slots=True)
class VolumeStats:
    average: float = 0.0
    peak: float = 0.0
    dynamic: float = 0.0


@dataclass(frozen=True, slots=True)
class AudioProfile:
    """Video-level audio summary shared read-only by every provider."""

    has_music: bool
    music_intensity: float
    speech_coverage: float
    emotional_peaks: tuple[float, ...]
    volume: VolumeStats
    tempo: float | None = None

    @classmethod
    def silent(cls) -> AudioProfile:
        return cls(
            has_music=False,
            music_intensity=0.0,
            speech_coverage=0.0,
            emotional_peaks=(),
            volume=VolumeStats(),
            tempo=None,
        )


@dataclass(frozen=True, slots=True)
class CropRegion:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True, slots=True)
class ViralScore:
    overall: int
    engagement: int
    shareability: int
    retention: int
    trend: int

    def axis(self, name: str) -> int:
        return int(getattr(self, name))


@dataclass(frozen=True, slots=True)
class ClipCandidate:
    """One provider's opinion about a clip-worthy time range."""

    provider_id: str
    title: str
    reason: str
    start_time: float
    end_time: float
    viral_score: ViralScore
    score_explanation: str

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True, slots=True)
class AggregatedClip:
    """Consensus identity for candidates judged to be the same moment."""

    clip_id: str
    start_time: float
    end_time: float
    title: str
    reason: str
    score_explanation: str
    recommended_by: tuple[str, ...]
    variations: dict[str, ClipCandidate]
    aggregated_viral_score: ViralScore
    confidence_score: float
    crop_regions: dict[str, CropRegion] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True, slots=True)
class ProviderSuccess:
    provider_id: str
    candidates: tuple[ClipCandidate, ...]
    rejected_count: int = 0


@dataclass(frozen=True, slots=True)
class ProviderFailure:
    provider_id: str
    message: str
    timed_out: bool = False


ProviderOutcome = Union[ProviderSuccess, ProviderFailure]


@dataclass(frozen=True, slots=True)
class ConsensusResult:
    """Terminal output of one analysis job."""

    clips: list[AggregatedClip]
    consensus_score: float
    providers: tuple[str, ...]
    individual_results: dict[str, tuple[ClipCandidate, ...]]
    failures: tuple[ProviderFailure, ...] = ()
    warnings: tuple[str, ...] = ()
    audio_profile: AudioProfile | None = None
    crop_regions: dict[str, CropRegion] = field(default_factory=dict)
