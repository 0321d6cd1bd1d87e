from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, NoReturn, TypeVar

import typer

from viral_clips.analysis_settings import PLATFORMS, resolve_analysis_settings
from viral_clips.config import DEFAULT_CONFIG_PATH, Settings, load_settings
from viral_clips.features.audio_profile import extract_audio_profile
from viral_clips.features.crop import plan_crop_regions
from viral_clips.features.frames import sample_frames
from viral_clips.ingest.probe import probe_video
from viral_clips.logging_config import configure_logging
from viral_clips.pipeline import analyze_video
from viral_clips.propose.exporter import (
    audio_profile_to_payload,
    export_payload_file,
    export_result,
    to_payload,
)
from viral_clips.providers.ollama import OllamaProvider

app = typer.Typer(help="Multi-provider viral clip analysis for a single video.")
config_app = typer.Typer(help="Configuration commands.")
ingest_app = typer.Typer(help="Ingest commands.")
features_app = typer.Typer(help="Signal extraction commands.")
propose_app = typer.Typer(help="Result export commands.")

app.add_typer(config_app, name="config")
app.add_typer(ingest_app, name="ingest")
app.add_typer(features_app, name="features")
app.add_typer(propose_app, name="propose")

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFIG_OPTION = typer.Option(
    DEFAULT_CONFIG_PATH,
    "--config",
    "-c",
    envvar="VIRAL_CLIPS_CONFIG",
    help="Path to YAML configuration file.",
)


def _run_with_progress(step_index: int, total_steps: int, label: str, work: Callable[[], T]) -> T:
    typer.echo(f"[{step_index}/{total_steps}] {label}...", err=True)
    started_at = perf_counter()
    try:
        result = work()
    except Exception:
        elapsed = perf_counter() - started_at
        typer.echo(f"[{step_index}/{total_steps}] {label} failed after {elapsed:.1f}s", err=True)
        raise
    elapsed = perf_counter() - started_at
    typer.echo(f"[{step_index}/{total_steps}] {label} done in {elapsed:.1f}s", err=True)
    return result


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _fail(exc: Exception) -> NoReturn:
    logger.error("Command failed: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1) from exc


@config_app.command("show")
def show_config(config_path: Path = CONFIG_OPTION) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@ingest_app.command("probe")
def probe(video_path: Path, config_path: Path = CONFIG_OPTION) -> None:
    """Probe a video with ffprobe and print duration, dimensions and audio presence."""

    _bootstrap(config_path)
    try:
        source = probe_video(video_path)
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        _fail(exc)

    logger.info("Probe completed for %s", video_path)
    typer.echo(json.dumps({**asdict(source), "path": str(source.path)}, indent=2))


@features_app.command("frames")
def frames(
    video_path: Path,
    config_path: Path = CONFIG_OPTION,
    frame_count: int | None = typer.Option(None, help="Number of frames to sample (defaults to config)."),
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Write sampled JPEG frames here."),
) -> None:
    """Sample evenly spaced frames and report their timestamps."""

    settings = _bootstrap(config_path)
    try:
        source = probe_video(video_path)
        sampled = sample_frames(source, frame_count, settings.sampling)
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        _fail(exc)

    rows = []
    for index, frame in enumerate(sampled, start=1):
        row = {"index": index, "timestamp": frame.timestamp, "bytes": len(frame.image)}
        if output_dir is not None:
            output_dir.mkdir(parents=True, exist_ok=True)
            frame_path = output_dir / f"frame_{index:03d}.jpg"
            frame_path.write_bytes(frame.image)
            row["path"] = str(frame_path)
        rows.append(row)

    logger.info("Sampled %d frames from %s", len(rows), video_path)
    typer.echo(json.dumps({"frame_count": len(rows), "frames": rows}, indent=2))


@features_app.command("audio")
def audio(video_path: Path, config_path: Path = CONFIG_OPTION) -> None:
    """Compute the audio profile (music, speech, peaks, volume, tempo)."""

    settings = _bootstrap(config_path)
    try:
        source = probe_video(video_path)
        profile = extract_audio_profile(source, settings.audio)
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        _fail(exc)

    logger.info("Audio profile completed for %s", video_path)
    typer.echo(json.dumps(audio_profile_to_payload(profile), indent=2))


@features_app.command("crop")
def crop(
    width: int,
    height: int,
    aspect_ratio: list[str] | None = typer.Option(None, "--aspect-ratio", "-a", help="Aspect ratio tag, e.g. 9:16."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Plan centered crop regions for a video size."""

    settings = _bootstrap(config_path)
    try:
        regions = plan_crop_regions(width, height, aspect_ratio or settings.crop.aspect_ratios)
    except ValueError as exc:
        _fail(exc)

    typer.echo(json.dumps({tag: asdict(region) for tag, region in regions.items()}, indent=2))


@app.command("analyze")
def analyze(
    video_path: Path,
    config_path: Path = CONFIG_OPTION,
    platform: str = typer.Option("tiktok", help=f"Target platform: {', '.join(PLATFORMS)}."),
    content_type: list[str] | None = typer.Option(None, "--content-type", "-t", help="Content type focus (repeatable)."),
    min_duration: float | None = typer.Option(None, help="Minimum clip length in seconds (defaults to platform)."),
    max_duration: float | None = typer.Option(None, help="Maximum clip length in seconds (defaults to platform)."),
    frame_count: int | None = typer.Option(None, help="Frames to sample (defaults to config)."),
    include_audio: bool = typer.Option(True, help="Run audio analysis and pass the profile to providers."),
    custom_prompt: str | None = typer.Option(None, help="Extra instructions appended to the provider prompt."),
    model: list[str] | None = typer.Option(None, "--model", "-m", help="Ollama model to use as a provider (repeatable)."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write the result as JSON or CSV (by extension)."),
) -> None:
    """Analyze a video with every configured provider and print the consensus result."""

    settings = _bootstrap(config_path)
    raw_request: dict[str, Any] = {
        "platform": platform,
        "min_duration": min_duration,
        "max_duration": max_duration,
        "frame_count": frame_count,
        "include_audio": include_audio,
        "custom_prompt": custom_prompt,
    }
    if content_type:
        raw_request["content_types"] = content_type

    total_steps = 3 if output is not None else 2
    try:
        request = resolve_analysis_settings(raw_request)
        source = _run_with_progress(1, total_steps, "Probe video", lambda: probe_video(video_path))
        providers = [
            OllamaProvider(
                model=name,
                endpoint=settings.providers.endpoint,
                timeout_seconds=settings.providers.request_timeout_seconds,
                max_retries=settings.providers.max_retries,
                duration=source.duration,
            )
            for name in (model or settings.providers.models)
        ]
        result = _run_with_progress(
            2,
            total_steps,
            f"Analyze with {len(providers)} provider(s)",
            lambda: analyze_video(source, providers, request, settings=settings),
        )
        exported = None
        if output is not None:
            exported = _run_with_progress(3, total_steps, "Export result", lambda: export_result(result, output))
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        _fail(exc)

    for warning in result.warnings:
        typer.echo(f"Warning: {warning}", err=True)

    payload = to_payload(result)
    if exported is not None:
        payload["output_path"] = str(exported)
    typer.echo(json.dumps(payload, indent=2))


@propose_app.command("export")
def export(
    result_path: Path = typer.Argument(..., help="Path to a JSON result written by `analyze --output`."),
    output_path: Path = typer.Argument(..., help="Destination file; .csv writes a review table, otherwise JSON."),
) -> None:
    """Re-export a saved analysis result."""

    try:
        exported = export_payload_file(result_path, output_path)
    except (OSError, ValueError) as exc:
        _fail(exc)

    typer.echo(json.dumps({"output_path": str(exported)}, indent=2))


if __name__ == "__main__":
    app()
