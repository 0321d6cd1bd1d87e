from __future__ import annotations


class ClipAnalysisError(Exception):
    """Base class for analysis failures surfaced to callers."""


class ValidationError(ClipAnalysisError, ValueError):
    """Malformed request settings, rejected before any decoding starts."""


class FrameExtractionError(ClipAnalysisError, RuntimeError):
    """A frame could not be decoded at the requested timestamp."""

    def __init__(self, message: str, *, timestamp: float | None = None) -> None:
        super().__init__(message)
        self.timestamp = timestamp


class AudioAnalysisError(ClipAnalysisError, RuntimeError):
    """The audio track exists but could not be decoded."""


class ProviderError(ClipAnalysisError, RuntimeError):
    """One provider call failed; siblings keep running."""

    def __init__(self, provider_id: str, message: str) -> None:
        super().__init__(f"{provider_id}: {message}")
        self.provider_id = provider_id
        self.message = message


class AnalysisCancelled(ClipAnalysisError, RuntimeError):
    """The job's cancellation signal was raised; partial results are discarded."""
