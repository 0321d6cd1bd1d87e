from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

import viral_clips.cli as cli
from viral_clips.config import Settings
from viral_clips.models import ConsensusResult, VideoSource


def _source(path: Path) -> VideoSource:
    return VideoSource(path=path, duration=90.0, width=1920, height=1080)


def _empty_result(provider_ids: tuple[str, ...]) -> ConsensusResult:
    return ConsensusResult(
        clips=[],
        consensus_score=0.0,
        providers=provider_ids,
        individual_results={},
        warnings=("All providers failed: ollama:llava:7b: connection refused",),
    )


def test_analyze_prints_clean_error_without_traceback(tmp_path: Path, monkeypatch) -> None:
    video_path = tmp_path / "sample.mp4"
    video_path.write_bytes(b"data")

    monkeypatch.setattr(cli, "_bootstrap", lambda _: Settings())
    monkeypatch.setattr(
        cli,
        "probe_video",
        lambda _path: (_ for _ in ()).throw(
            RuntimeError("ffprobe is installed but failed to start because required shared libraries are missing")
        ),
    )

    result = CliRunner().invoke(cli.app, ["analyze", str(video_path)])

    assert result.exit_code == 1
    assert "[1/2] Probe video..." in result.output
    assert "[1/2] Probe video failed" in result.output
    assert "Error: ffprobe is installed but failed to start" in result.output
    assert "Traceback" not in result.output


def test_analyze_rejects_invalid_options_before_probing(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda _: Settings())
    monkeypatch.setattr(
        cli,
        "probe_video",
        lambda _path: (_ for _ in ()).throw(AssertionError("probe should not run")),
    )

    result = CliRunner().invoke(
        cli.app,
        ["analyze", str(tmp_path / "sample.mp4"), "--min-duration", "90", "--max-duration", "10"],
    )

    assert result.exit_code == 1
    assert "Error: Invalid analysis settings" in result.output
    assert "[1/2]" not in result.output


def test_analyze_builds_one_provider_per_model_and_exports(tmp_path: Path, monkeypatch) -> None:
    video_path = tmp_path / "sample.mp4"
    video_path.write_bytes(b"data")
    captured: dict[str, object] = {}

    def _analyze_video(source, providers, request, *, settings):
        captured["provider_ids"] = [provider.provider_id for provider in providers]
        captured["durations"] = [provider.duration for provider in providers]
        captured["platform"] = request.platform
        return _empty_result(tuple(captured["provider_ids"]))

    monkeypatch.setattr(cli, "_bootstrap", lambda _: Settings())
    monkeypatch.setattr(cli, "probe_video", _source)
    monkeypatch.setattr(cli, "analyze_video", _analyze_video)

    output_path = tmp_path / "out" / "result.json"
    result = CliRunner().invoke(
        cli.app,
        [
            "analyze",
            str(video_path),
            "--platform",
            "youtube",
            "--model",
            "llava:7b",
            "--model",
            "bakllava",
            "--output",
            str(output_path),
        ],
    )

    assert result.exit_code == 0
    assert captured == {
        "provider_ids": ["ollama:llava:7b", "ollama:bakllava"],
        "durations": [90.0, 90.0],
        "platform": "youtube",
    }
    assert "[3/3] Export result done" in result.output
    assert "Warning: All providers failed" in result.output
    assert json.loads(output_path.read_text(encoding="utf-8"))["clips"] == []


def test_features_crop_prints_regions(monkeypatch) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda _: Settings())

    result = CliRunner().invoke(cli.app, ["features", "crop", "1920", "1080", "-a", "1:1"])

    assert result.exit_code == 0
    assert json.loads(result.output) == {"1:1": {"x": 420.0, "y": 0.0, "width": 1080.0, "height": 1080.0}}


def test_features_crop_reports_bad_ratio(monkeypatch) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda _: Settings())

    result = CliRunner().invoke(cli.app, ["features", "crop", "1920", "1080", "-a", "wide"])

    assert result.exit_code == 1
    assert "Error: Aspect ratio must look like 'w:h'" in result.output


def test_propose_export_converts_result_to_csv(tmp_path: Path) -> None:
    saved = tmp_path / "result.json"
    saved.write_text(
        json.dumps(
            {
                "clips": [
                    {
                        "id": "agg_0001",
                        "startTime": 10,
                        "endTime": 25,
                        "confidenceScore": 100.0,
                        "recommendedBy": ["ollama:llava:7b"],
                        "aggregatedViralScore": {"overall": 77},
                    }
                ]
            }
        ),
        encoding="utf-8",
    )

    result = CliRunner().invoke(cli.app, ["propose", "export", str(saved), str(tmp_path / "review.csv")])

    assert result.exit_code == 0
    assert "agg_0001" in (tmp_path / "review.csv").read_text(encoding="utf-8")


def test_config_show_prints_resolved_settings() -> None:
    config_path = Path(__file__).resolve().parents[1] / "configs" / "default.yaml"

    result = CliRunner().invoke(cli.app, ["config", "show", "--config", str(config_path)])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["sampling"]["frame_count"] == 15
    assert payload["providers"]["endpoint"] == "http://localhost:11434"
