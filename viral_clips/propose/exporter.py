from __future__ import annotations

import csv
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from viral_clips.models import (
    SCORE_AXES,
    AggregatedClip,
    AudioProfile,
    ClipCandidate,
    ConsensusResult,
    CropRegion,
    ViralScore,
)

CSV_FIELDS = [
    "id",
    "start_time",
    "end_time",
    "duration",
    "title",
    "reason",
    "confidence_score",
    "confidence",
    "recommended_by",
    *(f"{axis}_score" for axis in SCORE_AXES),
    "score_explanation",
]


def export_result(result: ConsensusResult, output_path: str | Path) -> Path:
    """Export a consensus result to JSON (default) or CSV, based on file extension."""

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.suffix.lower() == ".csv":
        _write_csv(to_payload(result)["clips"], path)
    else:
        _write_json(to_payload(result), path)

    return path


def export_payload_file(payload_path: str | Path, output_path: str | Path) -> Path:
    """Re-export a previously written JSON result (e.g. to CSV for review)."""

    payload = load_payload(payload_path)
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.suffix.lower() == ".csv":
        _write_csv(payload["clips"], path)
    else:
        _write_json(payload, path)

    return path


def load_payload(path: str | Path) -> dict[str, Any]:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict) or not isinstance(payload.get("clips"), list):
        raise ValueError("Result file must be a JSON object with a 'clips' array.")

    for idx, row in enumerate(payload["clips"], start=1):
        if not isinstance(row, dict):
            raise ValueError(f"Clip row {idx} must be an object.")
        missing = [key for key in ("id", "startTime", "endTime", "confidenceScore") if key not in row]
        if missing:
            raise ValueError(f"Clip row {idx} is missing: {', '.join(missing)}")

    return payload


def to_payload(result: ConsensusResult) -> dict[str, Any]:
    """JSON-ready view of a result using the camelCase field names clients expect."""

    return {
        "clips": [clip_to_payload(clip) for clip in result.clips],
        "consensusScore": result.consensus_score,
        "providers": list(result.providers),
        "individualResults": {
            provider_id: [candidate_to_payload(candidate) for candidate in candidates]
            for provider_id, candidates in result.individual_results.items()
        },
        "failures": [
            {
                "providerId": failure.provider_id,
                "message": failure.message,
                "timedOut": failure.timed_out,
            }
            for failure in result.failures
        ],
        "warnings": list(result.warnings),
        "audioProfile": audio_profile_to_payload(result.audio_profile),
        "cropRegions": _regions_payload(result.crop_regions),
    }


def clip_to_payload(clip: AggregatedClip) -> dict[str, Any]:
    return {
        "id": clip.clip_id,
        "startTime": clip.start_time,
        "endTime": clip.end_time,
        "duration": round(clip.duration, 3),
        "title": clip.title,
        "reason": clip.reason,
        "scoreExplanation": clip.score_explanation,
        "recommendedBy": list(clip.recommended_by),
        "confidenceScore": clip.confidence_score,
        "aggregatedViralScore": _score_payload(clip.aggregated_viral_score),
        "variations": {
            provider_id: candidate_to_payload(candidate) for provider_id, candidate in clip.variations.items()
        },
        "cropRegions": _regions_payload(clip.crop_regions),
    }


def candidate_to_payload(candidate: ClipCandidate) -> dict[str, Any]:
    return {
        "providerId": candidate.provider_id,
        "title": candidate.title,
        "reason": candidate.reason,
        "startTime": candidate.start_time,
        "endTime": candidate.end_time,
        "viralScore": _score_payload(candidate.viral_score),
        "scoreExplanation": candidate.score_explanation,
    }


def audio_profile_to_payload(profile: AudioProfile | None) -> dict[str, Any] | None:
    if profile is None:
        return None
    return {
        "hasMusic": profile.has_music,
        "musicIntensity": profile.music_intensity,
        "speechCoverage": profile.speech_coverage,
        "emotionalPeaks": list(profile.emotional_peaks),
        "volume": {
            "average": profile.volume.average,
            "peak": profile.volume.peak,
            "dynamic": profile.volume.dynamic,
        },
        "tempo": profile.tempo,
    }


def _score_payload(score: ViralScore) -> dict[str, int]:
    return {axis: score.axis(axis) for axis in SCORE_AXES}


def _regions_payload(regions: Mapping[str, CropRegion]) -> dict[str, dict[str, float]]:
    return {
        tag: {"x": region.x, "y": region.y, "width": region.width, "height": region.height}
        for tag, region in regions.items()
    }


def _write_json(payload: dict[str, Any], path: Path) -> None:
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


def _write_csv(clips: list[dict[str, Any]], path: Path) -> None:
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=CSV_FIELDS)
        writer.writeheader()
        for clip in clips:
            score = clip.get("aggregatedViralScore") or {}
            start_time = float(clip["startTime"])
            end_time = float(clip["endTime"])
            confidence_score = float(clip["confidenceScore"])
            row = {
                "id": clip["id"],
                "start_time": f"{start_time:.3f}",
                "end_time": f"{end_time:.3f}",
                "duration": f"{end_time - start_time:.3f}",
                "title": clip.get("title", ""),
                "reason": clip.get("reason", ""),
                "confidence_score": f"{confidence_score:.1f}",
                "confidence": _confidence_label(confidence_score),
                "recommended_by": "|".join(clip.get("recommendedBy", [])),
                "score_explanation": clip.get("scoreExplanation", ""),
            }
            for axis in SCORE_AXES:
                row[f"{axis}_score"] = score.get(axis, "")
            writer.writerow(row)


def _confidence_label(confidence_score: float) -> str:
    if confidence_score >= 80:
        return "high"
    if confidence_score >= 50:
        return "medium"
    return "low"
