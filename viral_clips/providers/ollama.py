from __future__ import annotations

import base64
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any
from urllib import request
from urllib.error import HTTPError, URLError

from viral_clips.analysis_settings import AnalysisSettings
from viral_clips.errors import ProviderError
from viral_clips.models import AudioProfile, SampledFrame
from viral_clips.providers.base import parse_provider_response
from viral_clips.providers.prompt import build_analysis_prompt

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llava:7b"
DEFAULT_ENDPOINT = "http://localhost:11434"
DEFAULT_TIMEOUT_SECONDS = 90
DEFAULT_MAX_RETRIES = 1


@dataclass(slots=True)
class OllamaProvider:
    """Clip proposals from a local Ollama vision model."""

    model: str = DEFAULT_MODEL
    endpoint: str = DEFAULT_ENDPOINT
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    duration: float | None = None

    @property
    def provider_id(self) -> str:
        return f"ollama:{self.model}"

    def analyze(
        self,
        frames: Sequence[SampledFrame],
        audio_profile: AudioProfile | None,
        settings: AnalysisSettings,
    ) -> list[dict[str, Any]]:
        duration = self.duration if self.duration is not None else _infer_duration(frames)
        prompt = build_analysis_prompt(frames, audio_profile, settings, duration=duration)
        images = [base64.b64encode(frame.image).decode("ascii") for frame in frames]

        last_error = "no attempt made"
        for attempt in range(max(0, self.max_retries) + 1):
            try:
                response_text = _request_ollama(
                    endpoint=self.endpoint,
                    model=self.model,
                    prompt=prompt,
                    images=images,
                    timeout_seconds=self.timeout_seconds,
                )
                return parse_provider_response(self.provider_id, response_text)
            except (ProviderError, ValueError, HTTPError, URLError, TimeoutError, OSError) as exc:
                last_error = str(exc)
                logger.warning("Ollama attempt %d for %s failed: %s", attempt + 1, self.model, exc)
                continue

        raise ProviderError(self.provider_id, f"Ollama request failed: {last_error}")


def _request_ollama(*, endpoint: str, model: str, prompt: str, images: list[str], timeout_seconds: int) -> str:
    body = json.dumps(
        {
            "model": model,
            "prompt": prompt,
            "images": images,
            "stream": False,
            "format": "json",
        }
    ).encode("utf-8")

    req = request.Request(
        f"{endpoint.rstrip('/')}/api/generate",
        data=body,
        method="POST",
        headers={"Content-Type": "application/json"},
    )

    with request.urlopen(req, timeout=timeout_seconds) as response:
        payload = json.loads(response.read().decode("utf-8"))

    content = payload.get("response")
    if not isinstance(content, str):
        raise ValueError("Ollama response missing JSON text in 'response' field.")
    return content


def _infer_duration(frames: Sequence[SampledFrame]) -> float:
    # frames sit at k * duration / (n + 1), so the spacing recovers the duration
    if not frames:
        return 0.0
    return frames[0].timestamp * (len(frames) + 1)
