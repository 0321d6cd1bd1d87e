from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from pathlib import Path

import pytest

from viral_clips import pipeline
from viral_clips.config import ProviderSettings, Settings
from viral_clips.errors import AnalysisCancelled, FrameExtractionError, ProviderError, ValidationError
from viral_clips.models import AudioProfile, SampledFrame, VideoSource
from viral_clips.providers.base import FunctionProvider

SOURCE = VideoSource(path=Path("match.mp4"), duration=120.0, width=1920, height=1080)


def _fake_frames(source, frame_count, settings, cancel_event=None):
    interval = source.duration / (frame_count + 1)
    return [
        SampledFrame(timestamp=interval * step, image=b"jpeg", width=1280, height=720)
        for step in range(1, frame_count + 1)
    ]


def _fake_audio(source, settings, cancel_event=None):
    return AudioProfile.silent()


@pytest.fixture(autouse=True)
def _fake_signals(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(pipeline, "sample_frames", _fake_frames)
    monkeypatch.setattr(pipeline, "extract_audio_profile", _fake_audio)


def _clip(start: float, end: float, overall: int) -> dict:
    return {
        "title": f"clip {start}-{end}",
        "reason": "moment",
        "startTime": start,
        "endTime": end,
        "viralScore": {
            "overall": overall,
            "engagement": overall,
            "shareability": overall,
            "retention": overall,
            "trend": overall,
        },
    }


def _returns(*clips: dict):
    return lambda _frames, _audio, _settings: list(clips)


def test_analyze_video_aggregates_across_providers() -> None:
    providers = [
        FunctionProvider("a", _returns(_clip(10, 20, 80))),
        FunctionProvider("b", _returns(_clip(12, 22, 90))),
        FunctionProvider("c", _returns(_clip(50, 60, 40))),
    ]

    result = pipeline.analyze_video(SOURCE, providers, {"platform": "tiktok"})

    assert [clip.recommended_by for clip in result.clips] == [("a", "b"), ("c",)]
    assert [clip.confidence_score for clip in result.clips] == [pytest.approx(66.7), pytest.approx(33.3)]
    assert result.clips[0].aggregated_viral_score.overall == 85
    assert result.consensus_score == pytest.approx(50.0)
    assert result.providers == ("a", "b", "c")
    assert result.failures == ()
    assert result.warnings == ()
    assert result.audio_profile == AudioProfile.silent()
    assert set(result.crop_regions) == {"16:9", "9:16", "1:1"}
    assert result.clips[0].crop_regions["9:16"].width == pytest.approx(607.5)


def test_analyze_video_excludes_failed_provider() -> None:
    def _broken(*_args):
        raise ProviderError("b", "rate limited")

    providers = [
        FunctionProvider("a", _returns(_clip(10, 30, 70))),
        FunctionProvider("b", _broken),
    ]

    result = pipeline.analyze_video(SOURCE, providers)

    assert len(result.clips) == 1
    assert result.clips[0].recommended_by == ("a",)
    assert result.clips[0].confidence_score == 50.0
    assert [failure.provider_id for failure in result.failures] == ["b"]
    assert set(result.individual_results) == {"a"}
    assert "1 of 2 providers failed" in result.warnings[0]


def test_analyze_video_returns_empty_result_when_all_providers_fail() -> None:
    def _broken(*_args):
        raise RuntimeError("model not loaded")

    result = pipeline.analyze_video(SOURCE, [FunctionProvider("a", _broken), FunctionProvider("b", _broken)])

    assert result.clips == []
    assert result.consensus_score == 0.0
    assert len(result.failures) == 2
    assert result.warnings[0].startswith("All providers failed")


def test_analyze_video_times_out_wedged_provider() -> None:
    release = threading.Event()

    def _wedged(*_args):
        release.wait(5)
        return [_clip(0, 10, 99)]

    settings = Settings(providers=ProviderSettings(timeout_seconds=0.2))
    providers = [FunctionProvider("fast", _returns(_clip(10, 30, 70))), FunctionProvider("slow", _wedged)]

    started = time.monotonic()
    try:
        result = pipeline.analyze_video(SOURCE, providers, settings=settings)
    finally:
        release.set()

    assert time.monotonic() - started < 3
    assert [clip.recommended_by for clip in result.clips] == [("fast",)]
    assert result.failures[0].provider_id == "slow"
    assert result.failures[0].timed_out is True


def test_analyze_video_cancels_while_waiting_for_providers() -> None:
    cancel_event = threading.Event()
    release = threading.Event()

    def _cancel_then_block(*_args):
        cancel_event.set()
        release.wait(5)
        return []

    try:
        with pytest.raises(AnalysisCancelled):
            pipeline.analyze_video(
                SOURCE,
                [FunctionProvider("a", _cancel_then_block)],
                cancel_event=cancel_event,
            )
    finally:
        release.set()


def test_analyze_video_validates_settings_before_decoding(monkeypatch: pytest.MonkeyPatch) -> None:
    def _should_not_run(*_args, **_kwargs):
        raise AssertionError("decoding started before validation")

    monkeypatch.setattr(pipeline, "sample_frames", _should_not_run)
    monkeypatch.setattr(pipeline, "extract_audio_profile", _should_not_run)
    provider = FunctionProvider("a", _returns())

    with pytest.raises(ValidationError, match="min_duration"):
        pipeline.analyze_video(SOURCE, [provider], {"min_duration": 50, "max_duration": 10})
    with pytest.raises(ValidationError, match="platform"):
        pipeline.analyze_video(SOURCE, [provider], {"platform": "myspace"})
    with pytest.raises(ValidationError, match="No providers"):
        pipeline.analyze_video(SOURCE, [])
    with pytest.raises(ValidationError, match="Duplicate provider ids: a"):
        pipeline.analyze_video(SOURCE, [provider, provider])


def test_frame_failure_aborts_job_and_stops_audio(monkeypatch: pytest.MonkeyPatch) -> None:
    audio_stopped = threading.Event()

    def _failing_frames(*_args, **_kwargs):
        raise FrameExtractionError("Failed to extract frame at 12.000s", timestamp=12.0)

    def _slow_audio(source, settings, cancel_event=None):
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            if cancel_event is not None and cancel_event.is_set():
                audio_stopped.set()
                raise AnalysisCancelled("Audio analysis was cancelled.")
            time.sleep(0.01)
        return AudioProfile.silent()

    monkeypatch.setattr(pipeline, "sample_frames", _failing_frames)
    monkeypatch.setattr(pipeline, "extract_audio_profile", _slow_audio)

    with pytest.raises(FrameExtractionError):
        pipeline.analyze_video(SOURCE, [FunctionProvider("a", _returns())])

    assert audio_stopped.is_set()


def test_analyze_video_skips_audio_when_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[object] = []

    def _no_audio(*_args, **_kwargs):
        raise AssertionError("audio analysis should be skipped")

    def _record(_frames, audio, _settings):
        seen.append(audio)
        return []

    monkeypatch.setattr(pipeline, "extract_audio_profile", _no_audio)

    result = pipeline.analyze_video(SOURCE, [FunctionProvider("a", _record)], {"include_audio": False})

    assert seen == [None]
    assert result.audio_profile is None
    assert result.clips == []


def test_analyze_video_passes_requested_frame_count() -> None:
    counts: list[int] = []

    def _record(frames, _audio, _settings):
        counts.append(len(frames))
        return []

    pipeline.analyze_video(SOURCE, [FunctionProvider("a", _record)], {"frame_count": 6})

    assert counts == [6]


def test_plan_crops_adds_platform_target_ratio() -> None:
    settings = Settings()
    settings.crop.aspect_ratios = ["1:1"]

    regions = pipeline.plan_crops(SOURCE, pipeline.resolve_analysis_settings({"platform": "youtube"}), settings)

    assert set(regions) == {"1:1", "16:9"}


def test_analyze_file_validates_before_opening_input(monkeypatch: pytest.MonkeyPatch) -> None:
    opened: list[object] = []

    @contextmanager
    def _fake_open(data):
        opened.append(data)
        yield SOURCE

    monkeypatch.setattr(pipeline, "open_video_source", _fake_open)
    provider = FunctionProvider("a", _returns(_clip(10, 30, 70)))

    with pytest.raises(ValidationError):
        pipeline.analyze_file(b"video-bytes", [provider], {"frame_count": 0})
    assert opened == []

    result = pipeline.analyze_file(b"video-bytes", [provider])

    assert opened == [b"video-bytes"]
    assert result.clips[0].confidence_score == 100.0


def test_analyze_video_keeps_good_providers_when_one_returns_garbage() -> None:
    providers = [
        FunctionProvider("good", _returns(_clip(10, 30, 70))),
        FunctionProvider("bad", lambda _frames, _audio, _settings: 5),
    ]

    result = pipeline.analyze_video(SOURCE, providers)

    assert [clip.recommended_by for clip in result.clips] == [("good",)]
    assert result.failures[0].provider_id == "bad"
    assert result.failures[0].message == "unexpected response type: int"
