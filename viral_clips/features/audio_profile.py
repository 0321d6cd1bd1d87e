from __future__ import annotations

import logging
import math
from collections.abc import Sequence

import numpy as np

from viral_clips.config import AudioSettings
from viral_clips.errors import AnalysisCancelled, ValidationError
from viral_clips.ingest.extract_audio import decode_audio_pcm
from viral_clips.models import AudioProfile, AudioSample, CancelToken, VideoSource, VolumeStats

logger = logging.getLogger(__name__)


def extract_audio_profile(
    source: VideoSource,
    settings: AudioSettings | None = None,
    *,
    cancel_event: CancelToken | None = None,
) -> AudioProfile:
    """Decode the audio track, sample it on a fixed grid and summarize it.

    A missing or silent track yields the zero-valued profile; only decode
    failures raise (AudioAnalysisError from the decoder).
    """

    settings = settings or AudioSettings()
    if not source.has_audio:
        logger.info("No audio stream in %s; using silent audio profile.", source.path)
        return AudioProfile.silent()

    _raise_if_cancelled(cancel_event)
    waveform = decode_audio_pcm(source.path, target_sample_rate=settings.sample_rate)
    samples = sample_waveform(
        waveform,
        sample_rate=settings.sample_rate,
        duration=source.duration,
        settings=settings,
        cancel_event=cancel_event,
    )
    profile = build_audio_profile(samples, settings.step_seconds, settings=settings)
    logger.info(
        "Audio analysis complete: %d samples, %d emotional peaks, music=%s",
        len(samples),
        len(profile.emotional_peaks),
        profile.has_music,
    )
    return profile


def sample_waveform(
    waveform: np.ndarray,
    *,
    sample_rate: int,
    duration: float,
    settings: AudioSettings | None = None,
    cancel_event: CancelToken | None = None,
) -> list[AudioSample]:
    """Take one analyser reading every ``step_seconds`` across ``duration``."""

    settings = settings or AudioSettings()
    step = settings.step_seconds
    if duration <= 0:
        raise ValidationError("Audio duration must be positive.")
    if step <= 0:
        raise ValidationError("Audio step_seconds must be positive.")
    if sample_rate <= 0:
        raise ValidationError("Audio sample_rate must be positive.")

    fft_size = settings.fft_size
    signal = np.asarray(waveform, dtype=np.float64)
    window = _blackman_window(fft_size)
    speech_band = _band_slice(settings.speech_band_hz, sample_rate, fft_size)
    music_band = _band_slice(settings.music_band_hz, sample_rate, fft_size)
    smoothed = np.zeros(fft_size // 2, dtype=np.float64)

    total = sample_count(duration, step)
    samples: list[AudioSample] = []
    for index in range(total):
        _raise_if_cancelled(cancel_event)

        timestamp = round(index * step, 6)
        segment = _segment_at(signal, int(round(timestamp * sample_rate)), fft_size)

        rms = min(float(np.sqrt(np.mean(np.square(segment)))), 1.0)
        smoothed = _smooth_spectrum(segment, window, smoothed, settings.smoothing_time_constant)
        byte_bins = _to_byte_spectrum(smoothed, settings.min_decibels, settings.max_decibels)

        samples.append(
            AudioSample(
                timestamp=timestamp,
                rms=rms,
                frequency_bins=tuple(int(value) for value in byte_bins),
                speech_score=_band_mean(byte_bins, speech_band),
                music_score=_band_mean(byte_bins, music_band),
            )
        )

        if index and index % max(int(round(1.0 / step)) * 10, 1) == 0:
            logger.debug("Audio sampling progress: %d/%d", index, total)

    return samples


def sample_count(duration: float, step: float) -> int:
    # round() absorbs float noise such as 1.1 / 0.1 == 11.000000000000002
    return max(int(math.ceil(round(duration / step, 9))), 0)


def build_audio_profile(
    samples: Sequence[AudioSample],
    step_seconds: float,
    *,
    settings: AudioSettings | None = None,
) -> AudioProfile:
    """Aggregate a fully materialized sample sequence into an AudioProfile."""

    settings = settings or AudioSettings()
    if not samples:
        return AudioProfile.silent()

    rms_values = np.array([sample.rms for sample in samples], dtype=np.float64)
    speech_scores = np.array([sample.speech_score for sample in samples], dtype=np.float64)
    music_scores = np.array([sample.music_score for sample in samples], dtype=np.float64)

    volume = volume_stats(rms_values)
    peaks = detect_emotional_peaks(
        rms_values,
        step_seconds,
        average=volume.average,
        rise_ratio=settings.peak_rise_ratio,
        fall_ratio=settings.peak_fall_ratio,
        average_ratio=settings.peak_average_ratio,
    )

    speech_coverage = _coverage_above_mean(speech_scores, settings.speech_threshold_ratio)
    music_fraction = _coverage_above_mean(music_scores, settings.music_threshold_ratio)
    has_music = music_fraction > settings.music_coverage_threshold
    music_intensity = float(music_scores.mean()) / 255.0

    tempo = None
    if has_music:
        tempo = estimate_tempo(
            music_scores,
            step_seconds,
            min_lag=settings.tempo_min_lag,
            max_lag=settings.tempo_max_lag,
        )

    return AudioProfile(
        has_music=bool(has_music),
        music_intensity=min(max(music_intensity, 0.0), 1.0),
        speech_coverage=speech_coverage,
        emotional_peaks=tuple(peaks),
        volume=volume,
        tempo=tempo,
    )


def volume_stats(rms_values: Sequence[float] | np.ndarray) -> VolumeStats:
    """Mean/max/population-std over the audible (rms > 0) readings."""

    values = np.asarray(rms_values, dtype=np.float64)
    audible = values[values > 0]
    if len(audible) == 0:
        return VolumeStats()

    return VolumeStats(
        average=float(audible.mean()),
        peak=float(audible.max()),
        dynamic=float(audible.std()),
    )


def detect_emotional_peaks(
    rms_values: Sequence[float] | np.ndarray,
    step_seconds: float,
    *,
    average: float | None = None,
    rise_ratio: float = 1.5,
    fall_ratio: float = 1.2,
    average_ratio: float = 1.3,
) -> list[float]:
    """Return timestamps of sudden loudness spikes.

    Index ``i`` is a peak when it jumps above its predecessor, drops into
    its successor and stands clear of the average. Close peaks are kept.
    """

    values = np.asarray(rms_values, dtype=np.float64)
    if average is None:
        average = volume_stats(values).average

    peaks: list[float] = []
    for index in range(1, len(values) - 1):
        current = values[index]
        if (
            current > values[index - 1] * rise_ratio
            and current > values[index + 1] * fall_ratio
            and current > average * average_ratio
        ):
            peaks.append(round(index * step_seconds, 6))
    return peaks


def estimate_tempo(
    music_scores: Sequence[float] | np.ndarray,
    step_seconds: float,
    *,
    min_lag: int = 10,
    max_lag: int = 100,
) -> float | None:
    """Estimate BPM from the strongest unnormalized autocorrelation lag."""

    series = np.asarray(music_scores, dtype=np.float64)
    best_lag: int | None = None
    best_correlation = 0.0

    for lag in range(max(min_lag, 1), max_lag + 1):
        if lag >= len(series):
            break
        correlation = float(np.dot(series[:-lag], series[lag:]))
        if correlation > best_correlation:
            best_correlation = correlation
            best_lag = lag

    if best_lag is None:
        return None
    return 60.0 / (best_lag * step_seconds)


def _coverage_above_mean(values: np.ndarray, ratio: float) -> float:
    if len(values) == 0:
        return 0.0
    threshold = float(values.mean()) * ratio
    return float(np.count_nonzero(values > threshold)) / len(values)


def _segment_at(signal: np.ndarray, start: int, size: int) -> np.ndarray:
    segment = signal[start : start + size]
    if len(segment) < size:
        segment = np.pad(segment, (0, size - len(segment)))
    return segment


def _blackman_window(size: int) -> np.ndarray:
    n = np.arange(size, dtype=np.float64)
    alpha = 0.16
    a0 = 0.5 * (1 - alpha)
    a1 = 0.5
    a2 = 0.5 * alpha
    return a0 - a1 * np.cos(2 * np.pi * n / size) + a2 * np.cos(4 * np.pi * n / size)


def _smooth_spectrum(
    segment: np.ndarray,
    window: np.ndarray,
    previous: np.ndarray,
    time_constant: float,
) -> np.ndarray:
    size = len(segment)
    spectrum = np.fft.rfft(segment * window)[: size // 2]
    magnitude = np.abs(spectrum) / size
    return time_constant * previous + (1.0 - time_constant) * magnitude


def _to_byte_spectrum(magnitude: np.ndarray, min_decibels: float, max_decibels: float) -> np.ndarray:
    with np.errstate(divide="ignore"):
        decibels = 20.0 * np.log10(magnitude)
    scale = 255.0 / (max_decibels - min_decibels)
    scaled = np.floor(scale * (decibels - min_decibels))
    return np.clip(scaled, 0, 255).astype(np.uint8)


def _band_slice(band_hz: tuple[float, float], sample_rate: int, fft_size: int) -> slice:
    bin_count = fft_size // 2
    bin_width = sample_rate / fft_size
    low_hz, high_hz = band_hz
    low = min(max(int(math.floor(low_hz / bin_width)), 0), bin_count - 1)
    high = min(max(int(math.ceil(high_hz / bin_width)), low + 1), bin_count)
    return slice(low, high)


def _band_mean(byte_bins: np.ndarray, band: slice) -> float:
    selected = byte_bins[band]
    return float(selected.mean()) if len(selected) else 0.0


def _raise_if_cancelled(cancel_event: CancelToken | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise AnalysisCancelled("Audio analysis was cancelled.")
