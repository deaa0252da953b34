"""PCM processing: level metering, quality estimation and resampling."""

import logging
from collections import deque
from math import gcd
from typing import Deque, Optional, Tuple

import numpy as np
from scipy import signal

from ..models.media import AudioQualityMetrics

logger = logging.getLogger(__name__)

# Levels are reported on a dBFS scale mapped to 0..1 over [-60 dB, 0 dB]
DB_FLOOR = -60.0
CLIPPING_PEAK = 0.99
LOW_LEVEL = 0.2
HIGH_NOISE = 0.5
GOOD_SNR_DB = 30.0


def pcm_to_float(pcm: bytes, channels: int = 1) -> np.ndarray:
    """Decode 16-bit little-endian PCM to float samples in [-1, 1], mixed to mono."""
    samples = np.frombuffer(pcm, dtype="<i2").astype(np.float32) / 32768.0
    if channels > 1 and samples.size:
        samples = samples[: samples.size - samples.size % channels].reshape(-1, channels).mean(axis=1)
    return samples


def float_to_pcm(samples: np.ndarray) -> bytes:
    clipped = np.clip(samples, -1.0, 32767.0 / 32768.0)
    return (clipped * 32768.0).astype("<i2").tobytes()


def rms_and_peak(pcm: bytes, channels: int = 1) -> Tuple[float, float]:
    samples = pcm_to_float(pcm, channels)
    if samples.size == 0:
        return 0.0, 0.0
    return float(np.sqrt(np.mean(np.square(samples)))), float(np.max(np.abs(samples)))


def level_from_rms(rms: float) -> float:
    """Map an RMS amplitude to a 0..1 level on the dBFS scale."""
    if rms <= 0.0:
        return 0.0
    db = 20.0 * np.log10(rms)
    return float(np.clip((db - DB_FLOOR) / -DB_FLOOR, 0.0, 1.0))


def resample_pcm(pcm: bytes, from_rate: int, to_rate: int, channels: int = 1) -> bytes:
    """Resample 16-bit PCM between sample rates with a polyphase filter."""
    if from_rate == to_rate or not pcm:
        return pcm
    divisor = gcd(from_rate, to_rate)
    samples = np.frombuffer(pcm, dtype="<i2").astype(np.float32) / 32768.0
    if channels > 1:
        samples = samples[: samples.size - samples.size % channels].reshape(-1, channels)
        resampled = signal.resample_poly(samples, to_rate // divisor, from_rate // divisor, axis=0).reshape(-1)
    else:
        resampled = signal.resample_poly(samples, to_rate // divisor, from_rate // divisor)
    return float_to_pcm(resampled)


class AudioQualityMonitor:
    """Rolling audio quality estimate over the most recent chunks.

    The noise floor is the 10th percentile of per-chunk RMS across the
    window, so pauses between utterances define it.
    """

    def __init__(self, window_chunks: int = 50, channels: int = 1):
        self.channels = channels
        self._levels: Deque[Tuple[float, float]] = deque(maxlen=window_chunks)

    def update(self, pcm: bytes) -> None:
        self._levels.append(rms_and_peak(pcm, self.channels))

    def reset(self) -> None:
        self._levels.clear()

    @property
    def has_measurements(self) -> bool:
        return bool(self._levels)

    def metrics(self) -> Optional[AudioQualityMetrics]:
        """Current metrics, or None before any audio has been measured."""
        if not self._levels:
            return None

        rms_values = np.array([rms for rms, _ in self._levels])
        peak = max(p for _, p in self._levels)
        signal_rms = float(np.mean(rms_values))
        floor_rms = float(np.percentile(rms_values, 10))

        input_level = level_from_rms(signal_rms)
        noise_level = level_from_rms(floor_rms)
        snr_db = 20.0 * np.log10(max(signal_rms, 1e-9) / max(floor_rms, 1e-9))
        snr_score = float(np.clip(snr_db / GOOD_SNR_DB, 0.0, 1.0))

        level_score = min(1.0, input_level / 0.5)
        if peak >= CLIPPING_PEAK:
            level_score *= 0.5
        quality_score = round(level_score * (0.4 + 0.6 * snr_score), 3)

        return AudioQualityMetrics(
            input_level=round(input_level, 3),
            peak_level=round(peak, 3),
            noise_level=round(noise_level, 3),
            quality_score=quality_score,
            recommendations=self._recommendations(input_level, peak, noise_level, snr_score),
        )

    @staticmethod
    def _recommendations(input_level: float, peak: float, noise_level: float, snr_score: float):
        recommendations = []
        if input_level < LOW_LEVEL:
            recommendations.append("Microphone level is low. Please speak louder or move closer to the microphone.")
        if peak >= CLIPPING_PEAK:
            recommendations.append("Microphone level is too high. Please lower your voice or move away from the microphone.")
        if noise_level > HIGH_NOISE and snr_score < 0.5:
            recommendations.append("High background noise detected. Consider using a quieter environment "
                                   "or noise-canceling headphones.")
        if not recommendations:
            recommendations.append("Audio quality is good.")
        return recommendations
