from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "VIRAL_CLIPS_"


class SamplingSettings(BaseModel):
    frame_count: int = 15
    target_width: int = 1280
    target_height: int = 720
    jpeg_quality: int = 90
    seek_retry_offset_seconds: float = 0.05


class AudioSettings(BaseModel):
    step_seconds: float = 0.1
    sample_rate: int = 44100
    fft_size: int = 2048
    smoothing_time_constant: float = 0.8
    min_decibels: float = -100.0
    max_decibels: float = -30.0
    speech_band_hz: tuple[float, float] = (500.0, 2000.0)
    music_band_hz: tuple[float, float] = (250.0, 5000.0)
    peak_rise_ratio: float = 1.5
    peak_fall_ratio: float = 1.2
    peak_average_ratio: float = 1.3
    speech_threshold_ratio: float = 0.7
    music_threshold_ratio: float = 0.8
    music_coverage_threshold: float = 0.3
    tempo_min_lag: int = 10
    tempo_max_lag: int = 100


class CropSettings(BaseModel):
    aspect_ratios: list[str] = Field(default_factory=lambda: ["16:9", "9:16", "1:1"])


class ConsensusSettings(BaseModel):
    """Clustering and confidence knobs.

    With one decimal, neighbouring confidences can round to the same value
    once more than about 1000 providers are invoked. Ranking still uses the
    exact provider count; raise ``confidence_decimals`` for that many.
    """

    overlap_threshold: float = 0.5
    confidence_decimals: int = 1


class ProviderSettings(BaseModel):
    timeout_seconds: float = 120.0
    endpoint: str = "http://localhost:11434"
    models: list[str] = Field(default_factory=lambda: ["llava:7b"])
    request_timeout_seconds: int = 90
    max_retries: int = 1


class LoggingSettings(BaseModel):
    level: str = "INFO"


class Settings(BaseModel):
    sampling: SamplingSettings = Field(default_factory=SamplingSettings)
    audio: AudioSettings = Field(default_factory=AudioSettings)
    crop: CropSettings = Field(default_factory=CropSettings)
    consensus: ConsensusSettings = Field(default_factory=ConsensusSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides."""

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    data = Settings.model_validate(raw_config).model_dump(mode="python")

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        _apply_override(data, path, raw_value)

    return Settings.model_validate(data)


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> None:
    current: Any = data
    for segment in path[:-1]:
        if not isinstance(current, dict) or segment not in current:
            return
        current = current[segment]

    if not isinstance(current, dict):
        return

    final_key = path[-1]
    if final_key not in current:
        return

    current[final_key] = _coerce_value(raw_value, current[final_key])


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int) and not isinstance(existing_value, bool):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict | tuple):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    return raw_value
