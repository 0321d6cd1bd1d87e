from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace

from viral_clips.errors import ValidationError
from viral_clips.models import SCORE_AXES, AggregatedClip, ClipCandidate, CropRegion, ViralScore

logger = logging.getLogger(__name__)

DEFAULT_OVERLAP_THRESHOLD = 0.5
DEFAULT_CONFIDENCE_DECIMALS = 1


@dataclass(slots=True)
class _Cluster:
    start: float
    end: float
    members: list[ClipCandidate] = field(default_factory=list)

    def add(self, candidate: ClipCandidate) -> None:
        self.members.append(candidate)
        self.start = min(self.start, candidate.start_time)
        self.end = max(self.end, candidate.end_time)


def overlap_ratio(first_start: float, first_end: float, second_start: float, second_end: float) -> float:
    """Shared time divided by the shorter of the two durations."""

    overlap = max(0.0, min(first_end, second_end) - max(first_start, second_start))
    shorter = min(first_end - first_start, second_end - second_start)
    if shorter <= 0:
        return 0.0
    return overlap / shorter


def cluster_candidates(
    candidates: Iterable[ClipCandidate],
    *,
    overlap_threshold: float = DEFAULT_OVERLAP_THRESHOLD,
) -> list[list[ClipCandidate]]:
    """Greedy start-time scan against each open cluster's bounding interval."""

    clusters: list[_Cluster] = []
    for candidate in sorted(candidates, key=_scan_key):
        current = clusters[-1] if clusters else None
        if current is not None and (
            overlap_ratio(current.start, current.end, candidate.start_time, candidate.end_time)
            >= overlap_threshold
        ):
            current.add(candidate)
            continue

        clusters.append(_Cluster(start=candidate.start_time, end=candidate.end_time, members=[candidate]))

    return [cluster.members for cluster in clusters]


def aggregate_candidates(
    candidates: Iterable[ClipCandidate],
    *,
    total_providers: int,
    crop_regions: Mapping[str, CropRegion] | None = None,
    overlap_threshold: float = DEFAULT_OVERLAP_THRESHOLD,
    confidence_decimals: int = DEFAULT_CONFIDENCE_DECIMALS,
) -> list[AggregatedClip]:
    """Merge candidates from every provider into ranked consensus clips.

    Confidence is the share of invoked providers that proposed a clip in
    the cluster's time region; score magnitude does not affect it. Output
    is ordered by recommending-provider count, which is confidence before
    rounding, then by aggregated overall score.
    """

    candidate_list = list(candidates)
    if not candidate_list:
        return []
    if total_providers < 1:
        raise ValidationError("total_providers must be at least 1 when candidates are present.")

    regions = dict(crop_regions or {})
    aggregated = [
        _aggregate_cluster(
            members,
            total_providers=total_providers,
            crop_regions=regions,
            confidence_decimals=confidence_decimals,
        )
        for members in cluster_candidates(candidate_list, overlap_threshold=overlap_threshold)
    ]

    aggregated.sort(
        key=lambda clip: (
            -len(clip.recommended_by),
            -clip.confidence_score,
            -clip.aggregated_viral_score.overall,
            clip.start_time,
            clip.end_time,
        )
    )

    ranked = [replace(clip, clip_id=f"agg_{index:04d}") for index, clip in enumerate(aggregated, start=1)]
    logger.info(
        "Aggregated %d candidates from %d providers into %d clips",
        len(candidate_list),
        total_providers,
        len(ranked),
    )
    return ranked


def consensus_score(clips: Iterable[AggregatedClip], *, decimals: int = DEFAULT_CONFIDENCE_DECIMALS) -> float:
    """Mean confidence across emitted clips (0 when there are none)."""

    confidences = [clip.confidence_score for clip in clips]
    if not confidences:
        return 0.0
    return round(sum(confidences) / len(confidences), decimals)


def _aggregate_cluster(
    members: list[ClipCandidate],
    *,
    total_providers: int,
    crop_regions: dict[str, CropRegion],
    confidence_decimals: int,
) -> AggregatedClip:
    variations: dict[str, ClipCandidate] = {}
    for candidate in members:
        kept = variations.get(candidate.provider_id)
        if kept is None or candidate.viral_score.overall > kept.viral_score.overall:
            variations[candidate.provider_id] = candidate

    recommended_by = tuple(sorted(variations))
    lead = min(variations.values(), key=lambda candidate: (-candidate.viral_score.overall, candidate.provider_id))
    confidence = round(100.0 * len(recommended_by) / total_providers, confidence_decimals)

    return AggregatedClip(
        clip_id="",
        start_time=min(candidate.start_time for candidate in members),
        end_time=max(candidate.end_time for candidate in members),
        title=lead.title,
        reason=lead.reason,
        score_explanation=lead.score_explanation,
        recommended_by=recommended_by,
        variations={provider_id: variations[provider_id] for provider_id in recommended_by},
        aggregated_viral_score=_mean_viral_score(list(variations.values())),
        confidence_score=min(confidence, 100.0),
        crop_regions=dict(crop_regions),
    )


def _mean_viral_score(candidates: list[ClipCandidate]) -> ViralScore:
    axes: dict[str, int] = {}
    for axis in SCORE_AXES:
        mean = sum(candidate.viral_score.axis(axis) for candidate in candidates) / len(candidates)
        axes[axis] = int(min(100, max(0, math.floor(mean + 0.5))))
    return ViralScore(**axes)


def _scan_key(candidate: ClipCandidate) -> tuple:
    return (
        candidate.start_time,
        candidate.end_time,
        candidate.provider_id,
        -candidate.viral_score.overall,
        candidate.title,
        candidate.reason,
        candidate.score_explanation,
    )

