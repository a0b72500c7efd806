# daq/simulated_source.py
from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

from .base_source import SampleSource

logger = logging.getLogger(__name__)


class SimulatedPulseSource(SampleSource):
    """
    Synthetic detector output: isolated Gaussian pulses of known height.

    Every pulse peaks exactly on a sample, so its reconstructed ``max - min``
    is its amplitude. With the default width (sigma of 1.3 samples) a pulse
    spans roughly six samples above the trigger, which is what the default
    ("6spp") settings are tuned for.

    Optional slow baseline drift (a sine spanning the whole stream) and white
    noise make the signal less ideal; both are drawn from a seeded generator so
    runs are reproducible.
    """

    def __init__(
        self,
        amplitudes: Sequence[float],
        *,
        spacing: int = 64,
        sigma: float = 1.3,
        jitter: int = 0,
        baseline: float = 0.0,
        drift: float = 0.0,
        noise: float = 0.0,
        sample_rate: int = 44_100,
        seed: Optional[int] = None,
    ) -> None:
        super().__init__()
        amps = np.asarray(amplitudes, dtype=np.float64)
        if amps.ndim != 1:
            raise ValueError("amplitudes must be a 1D sequence")
        if sigma <= 0:
            raise ValueError("sigma must be positive")
        half_extent = int(np.ceil(8 * sigma))
        if spacing <= 2 * (half_extent + jitter):
            raise ValueError("spacing too small: pulses would overlap")
        if jitter < 0:
            raise ValueError("jitter must be non-negative")
        if noise < 0:
            raise ValueError("noise must be non-negative")
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")

        self._rng = np.random.default_rng(seed)
        self._amplitudes = amps
        self._sigma = float(sigma)
        self._sample_rate = int(sample_rate)

        n_frames = (amps.shape[0] + 1) * int(spacing)
        offsets = np.zeros(amps.shape[0], dtype=np.int64)
        if jitter:
            offsets = self._rng.integers(-jitter, jitter + 1, size=amps.shape[0])
        self._centers = (np.arange(1, amps.shape[0] + 1, dtype=np.int64) * int(spacing)) + offsets

        signal = np.full(n_frames, float(baseline), dtype=np.float64)
        taps = np.arange(-half_extent, half_extent + 1)
        shape = np.exp(-0.5 * (taps / self._sigma) ** 2)
        for center, amp in zip(self._centers, amps):
            signal[center - half_extent : center + half_extent + 1] += amp * shape
        if drift:
            t = np.arange(n_frames, dtype=np.float64) / n_frames
            signal += drift * np.sin(2.0 * np.pi * t)
        if noise:
            signal += self._rng.normal(0.0, noise, size=n_frames)
        signal.setflags(write=False)
        self._signal = signal
        self._pos = 0

        logger.debug(
            "Simulated %d pulses over %d frames (sigma=%.2f, noise=%.4f, drift=%.4f)",
            amps.shape[0],
            n_frames,
            self._sigma,
            noise,
            drift,
        )

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def total_frames(self) -> int:
        return int(self._signal.shape[0])

    @property
    def amplitudes(self) -> np.ndarray:
        return self._amplitudes.copy()

    @property
    def centers(self) -> np.ndarray:
        """Stream indices of the pulse peaks."""
        return self._centers.copy()

    @property
    def signal(self) -> np.ndarray:
        return self._signal

    def expected_counts(self, num_bins: int) -> np.ndarray:
        """Histogram an ideal analyzer produces: one count at ``round(num_bins * a)`` per pulse."""
        counts = np.zeros(num_bins, dtype=np.uint64)
        bins = np.floor(num_bins * self._amplitudes + 0.5).astype(np.int64)
        for b in bins:
            if 0 <= b < num_bins:
                counts[b] += 1
        return counts

    def _read_impl(self, n_frames: int) -> np.ndarray:
        data = self._signal[self._pos : self._pos + n_frames]
        self._pos += int(data.shape[0])
        return data


__all__ = ["SimulatedPulseSource"]
