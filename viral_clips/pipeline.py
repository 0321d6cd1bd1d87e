from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Any, BinaryIO

from viral_clips.analysis_settings import AnalysisSettings, resolve_analysis_settings
from viral_clips.config import Settings
from viral_clips.errors import AnalysisCancelled, ValidationError
from viral_clips.features.audio_profile import extract_audio_profile
from viral_clips.features.crop import plan_crop_regions
from viral_clips.features.frames import sample_frames
from viral_clips.ingest.probe import open_video_source
from viral_clips.models import (
    AudioProfile,
    ClipCandidate,
    ConsensusResult,
    CropRegion,
    ProviderFailure,
    ProviderOutcome,
    ProviderSuccess,
    SampledFrame,
    VideoSource,
)
from viral_clips.providers.base import ProviderAdapter, invoke_provider
from viral_clips.scoring.consensus import aggregate_candidates, consensus_score

logger = logging.getLogger(__name__)

PROVIDER_POLL_SECONDS = 0.05


class _CancelScope:
    """Job-local abort flag that also honours the caller's cancellation event."""

    def __init__(self, parent: threading.Event | None) -> None:
        self._parent = parent
        self._local = threading.Event()

    def is_set(self) -> bool:
        return self._local.is_set() or (self._parent is not None and self._parent.is_set())

    def set(self) -> None:
        self._local.set()


def analyze_file(
    data: str | Path | bytes | BinaryIO,
    providers: Sequence[ProviderAdapter],
    analysis_settings: AnalysisSettings | dict[str, Any] | None = None,
    *,
    settings: Settings | None = None,
    cancel_event: threading.Event | None = None,
) -> ConsensusResult:
    """Probe a path/bytes/stream input and run the full analysis on it."""

    request = resolve_analysis_settings(analysis_settings)
    _validate_providers(providers)

    with open_video_source(data) as source:
        return analyze_video(source, providers, request, settings=settings, cancel_event=cancel_event)


def analyze_video(
    source: VideoSource,
    providers: Sequence[ProviderAdapter],
    analysis_settings: AnalysisSettings | dict[str, Any] | None = None,
    *,
    settings: Settings | None = None,
    cancel_event: threading.Event | None = None,
) -> ConsensusResult:
    """Run signal extraction, provider fan-out and consensus aggregation.

    Provider failures and timeouts are recorded and excluded; fatal decode
    errors, validation errors and cancellation propagate and discard any
    partial work.
    """

    request = resolve_analysis_settings(analysis_settings)
    settings = settings or Settings()
    _validate_providers(providers)
    if settings.providers.timeout_seconds <= 0:
        raise ValidationError("providers.timeout_seconds must be positive.")

    scope = _CancelScope(cancel_event)
    started_at = time.perf_counter()

    frames, audio_profile = extract_signals(source, request, settings, cancel_scope=scope)
    crop_regions = plan_crops(source, request, settings)

    outcomes = run_providers(
        providers,
        frames,
        audio_profile,
        request,
        duration=source.duration,
        timeout_seconds=settings.providers.timeout_seconds,
        cancel_scope=scope,
    )
    if scope.is_set():
        raise AnalysisCancelled("Analysis was cancelled.")

    result = build_result(
        outcomes,
        provider_ids=tuple(provider.provider_id for provider in providers),
        audio_profile=audio_profile,
        crop_regions=crop_regions,
        settings=settings,
    )
    logger.info(
        "Analysis of %s finished in %.1fs: %d clips, consensus %.1f",
        source.path,
        time.perf_counter() - started_at,
        len(result.clips),
        result.consensus_score,
    )
    return result


def extract_signals(
    source: VideoSource,
    request: AnalysisSettings,
    settings: Settings,
    *,
    cancel_scope: _CancelScope,
) -> tuple[list[SampledFrame], AudioProfile | None]:
    """Sample frames and audio as two concurrent tasks over independent decodes."""

    frame_count = request.frame_count or settings.sampling.frame_count

    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="signals") as executor:
        frame_future = executor.submit(
            sample_frames,
            source,
            frame_count,
            settings.sampling,
            cancel_event=cancel_scope,
        )
        audio_future: Future[AudioProfile] | None = None
        if request.include_audio:
            audio_future = executor.submit(
                extract_audio_profile,
                source,
                settings.audio,
                cancel_event=cancel_scope,
            )
        else:
            logger.info("Audio analysis disabled for this request; providers receive no audio profile.")

        try:
            frames = frame_future.result()
            audio_profile = audio_future.result() if audio_future is not None else None
        except BaseException:
            # stop the sibling decode loop before the executor joins it
            cancel_scope.set()
            raise

    return frames, audio_profile


def plan_crops(source: VideoSource, request: AnalysisSettings, settings: Settings) -> dict[str, CropRegion]:
    tags = list(settings.crop.aspect_ratios)
    target = request.target_aspect_ratio
    if target != "any" and target not in tags:
        tags.append(target)
    return plan_crop_regions(source.width, source.height, tags)


def run_providers(
    providers: Sequence[ProviderAdapter],
    frames: Sequence[SampledFrame],
    audio_profile: AudioProfile | None,
    request: AnalysisSettings,
    *,
    duration: float,
    timeout_seconds: float,
    cancel_scope: _CancelScope,
) -> list[ProviderOutcome]:
    """Fan out one task per provider and wait for all of them or the timeout."""

    frames = tuple(frames)
    executor = ThreadPoolExecutor(max_workers=max(len(providers), 1), thread_name_prefix="provider")
    futures: list[tuple[str, Future[ProviderOutcome]]] = [
        (
            provider.provider_id,
            executor.submit(invoke_provider, provider, frames, audio_profile, request, duration=duration),
        )
        for provider in providers
    ]

    deadline = time.monotonic() + timeout_seconds
    pending = {future for _, future in futures}
    try:
        while pending:
            if cancel_scope.is_set():
                raise AnalysisCancelled("Analysis was cancelled while waiting for providers.")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            _, pending = wait(pending, timeout=min(remaining, PROVIDER_POLL_SECONDS), return_when=FIRST_COMPLETED)
    finally:
        # wedged provider threads are abandoned, never joined
        executor.shutdown(wait=False, cancel_futures=True)

    outcomes: list[ProviderOutcome] = []
    for provider_id, future in futures:
        if future in pending:
            future.cancel()
            logger.warning("Provider %s timed out after %.1fs", provider_id, timeout_seconds)
            outcomes.append(
                ProviderFailure(
                    provider_id=provider_id,
                    message=f"timed out after {timeout_seconds:g}s",
                    timed_out=True,
                )
            )
            continue
        outcomes.append(future.result())

    return outcomes


def build_result(
    outcomes: Sequence[ProviderOutcome],
    *,
    provider_ids: tuple[str, ...],
    audio_profile: AudioProfile | None,
    crop_regions: dict[str, CropRegion],
    settings: Settings,
) -> ConsensusResult:
    successes = [outcome for outcome in outcomes if isinstance(outcome, ProviderSuccess)]
    failures = tuple(outcome for outcome in outcomes if isinstance(outcome, ProviderFailure))

    candidates: list[ClipCandidate] = [candidate for success in successes for candidate in success.candidates]
    clips = aggregate_candidates(
        candidates,
        total_providers=len(provider_ids),
        crop_regions=crop_regions,
        overlap_threshold=settings.consensus.overlap_threshold,
        confidence_decimals=settings.consensus.confidence_decimals,
    )

    warnings: list[str] = []
    if failures and not successes:
        details = ", ".join(f"{failure.provider_id}: {failure.message}" for failure in failures)
        warnings.append(f"All providers failed: {details}")
        logger.warning("All %d providers failed; returning no clips.", len(failures))
    elif failures:
        failed = ", ".join(failure.provider_id for failure in failures)
        warnings.append(
            f"{len(failures)} of {len(provider_ids)} providers failed ({failed}); "
            "results use the remaining providers only."
        )

    return ConsensusResult(
        clips=clips,
        consensus_score=consensus_score(clips, decimals=settings.consensus.confidence_decimals),
        providers=provider_ids,
        individual_results={success.provider_id: success.candidates for success in successes},
        failures=failures,
        warnings=tuple(warnings),
        audio_profile=audio_profile,
        crop_regions=crop_regions,
    )


def _validate_providers(providers: Sequence[ProviderAdapter]) -> None:
    if not providers:
        raise ValidationError("No providers selected for analysis.")

    provider_ids = [provider.provider_id for provider in providers]
    duplicates = sorted({provider_id for provider_id in provider_ids if provider_ids.count(provider_id) > 1})
    if duplicates:
        raise ValidationError(f"Duplicate provider ids: {', '.join(duplicates)}")
