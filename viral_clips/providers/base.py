from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import asdict, dataclass
from typing import Any, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from viral_clips.analysis_settings import AnalysisSettings
from viral_clips.errors import AnalysisCancelled, ProviderError
from viral_clips.models import (
    SCORE_AXES,
    AudioProfile,
    ClipCandidate,
    ProviderFailure,
    ProviderOutcome,
    ProviderSuccess,
    SampledFrame,
    ViralScore,
)

logger = logging.getLogger(__name__)

RawCandidate = Union[ClipCandidate, Mapping[str, Any]]
_DURATION_EPSILON = 1e-9


class ProviderAdapter(Protocol):
    """One AI backend: frames + audio profile + settings -> clip candidates."""

    provider_id: str

    def analyze(
        self,
        frames: Sequence[SampledFrame],
        audio_profile: AudioProfile | None,
        settings: AnalysisSettings,
    ) -> Sequence[RawCandidate]:
        ...


@dataclass(frozen=True, slots=True)
class FunctionProvider:
    """Adapter around a plain callable with the ``analyze`` signature."""

    provider_id: str
    fn: Callable[[Sequence[SampledFrame], AudioProfile | None, AnalysisSettings], Sequence[RawCandidate]]

    def analyze(
        self,
        frames: Sequence[SampledFrame],
        audio_profile: AudioProfile | None,
        settings: AnalysisSettings,
    ) -> Sequence[RawCandidate]:
        return self.fn(frames, audio_profile, settings)


class _ViralScorePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    overall: float
    engagement: float
    shareability: float
    retention: float
    trend: float

    @field_validator("*")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("score must be a finite number")
        return value


class _ClipPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    title: str | None = ""
    reason: str | None = ""
    start_time: float = Field(alias="startTime")
    end_time: float = Field(alias="endTime")
    viral_score: _ViralScorePayload = Field(alias="viralScore")
    score_explanation: str | None = Field(default="", alias="scoreExplanation")


def invoke_provider(
    provider: ProviderAdapter,
    frames: Sequence[SampledFrame],
    audio_profile: AudioProfile | None,
    settings: AnalysisSettings,
    *,
    duration: float,
) -> ProviderOutcome:
    """Run one provider and validate its output; failures become ProviderFailure."""

    provider_id = provider.provider_id
    try:
        raw_candidates = _candidate_rows(provider_id, provider.analyze(frames, audio_profile, settings))
    except AnalysisCancelled:
        raise
    except ProviderError as exc:
        logger.warning("Provider %s failed: %s", provider_id, exc.message)
        return ProviderFailure(provider_id=provider_id, message=exc.message)
    except Exception as exc:
        logger.exception("Provider %s raised an unexpected error", provider_id)
        return ProviderFailure(provider_id=provider_id, message=f"{type(exc).__name__}: {exc}")

    accepted, rejected = validate_candidates(
        provider_id,
        raw_candidates,
        duration=duration,
        min_duration=float(settings.min_duration),
        max_duration=float(settings.max_duration),
    )
    if rejected:
        logger.info("Provider %s: rejected %d of %d candidates", provider_id, rejected, rejected + len(accepted))
    return ProviderSuccess(provider_id=provider_id, candidates=tuple(accepted), rejected_count=rejected)


def validate_candidates(
    provider_id: str,
    raw_candidates: Sequence[RawCandidate],
    *,
    duration: float,
    min_duration: float,
    max_duration: float,
) -> tuple[list[ClipCandidate], int]:
    """Keep well-formed candidates inside the video and the duration window.

    Out-of-range score components are clamped into [0, 100] instead of
    rejecting the candidate.
    """

    accepted: list[ClipCandidate] = []
    rejected = 0

    for index, raw in enumerate(raw_candidates):
        candidate = _parse_candidate(provider_id, raw)
        if candidate is None:
            logger.debug("Provider %s candidate %d is malformed", provider_id, index)
            rejected += 1
            continue

        problem = _range_problem(candidate, duration, min_duration, max_duration)
        if problem:
            logger.debug("Provider %s candidate %d rejected: %s", provider_id, index, problem)
            rejected += 1
            continue

        accepted.append(candidate)

    return accepted, rejected


def parse_provider_response(provider_id: str, text: str) -> list[Any]:
    """Extract the raw clip list from a model's JSON (possibly wrapped in prose)."""

    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", text, re.DOTALL)
        if match is None:
            raise ProviderError(provider_id, "Response did not contain a JSON object.") from None
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise ProviderError(provider_id, f"Response JSON could not be parsed: {exc.msg}") from exc

    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("clips"), list):
        return payload["clips"]

    logger.warning("Provider %s response did not match the expected format.", provider_id)
    return []


def _candidate_rows(provider_id: str, response: Any) -> list[Any]:
    """Accept a bare clip list or the '{"clips": [...]}' wrapper the prompt asks for."""

    if response is None:
        return []
    if isinstance(response, Mapping):
        clips = response.get("clips")
        if isinstance(clips, list):
            return clips
        raise ProviderError(provider_id, "unexpected response type: object without a 'clips' array")
    if isinstance(response, (str, bytes)) or not isinstance(response, Sequence):
        raise ProviderError(provider_id, f"unexpected response type: {type(response).__name__}")
    return list(response)


def clamp_score(value: float) -> int:
    return int(min(100, max(0, math.floor(value + 0.5))))


def _parse_candidate(provider_id: str, raw: Any) -> ClipCandidate | None:
    if isinstance(raw, ClipCandidate):
        raw = asdict(raw)
    if not isinstance(raw, Mapping):
        return None

    try:
        payload = _ClipPayload.model_validate(dict(raw))
    except PydanticValidationError:
        return None

    scores = {axis: clamp_score(getattr(payload.viral_score, axis)) for axis in SCORE_AXES}
    return ClipCandidate(
        provider_id=provider_id,
        title=(payload.title or "").strip(),
        reason=(payload.reason or "").strip(),
        start_time=payload.start_time,
        end_time=payload.end_time,
        viral_score=ViralScore(**scores),
        score_explanation=(payload.score_explanation or "").strip(),
    )


def _range_problem(candidate: ClipCandidate, duration: float, min_duration: float, max_duration: float) -> str | None:
    if not (math.isfinite(candidate.start_time) and math.isfinite(candidate.end_time)):
        return "non-finite time"
    if candidate.start_time < 0 or candidate.end_time > duration:
        return "outside video bounds"
    if candidate.end_time <= candidate.start_time:
        return "end_time not after start_time"
    clip_duration = candidate.duration
    if clip_duration < min_duration - _DURATION_EPSILON or clip_duration > max_duration + _DURATION_EPSILON:
        return f"duration {clip_duration:.2f}s outside [{min_duration}, {max_duration}]"
    return None
