from __future__ import annotations

import math
import threading

import numpy as np


def _round_half_away(value: float) -> int:
    if value < 0:
        return int(value - 0.5)
    return int(value + 0.5)


def quantize(amplitude: float, num_bins: int, *, compatible: bool = True) -> int:
    """
    Map a reconstructed amplitude to a histogram bin.

    The bin is ``num_bins * amplitude`` rounded half away from zero. With
    `compatible` set the product is first cast through float32, which is what
    older releases did to get identical histograms on every platform; without
    it the rounding happens in full double precision.
    """
    scaled = float(num_bins) * float(amplitude)
    if not math.isfinite(scaled) or abs(scaled) > 2.0 ** 31:
        return -1 if scaled < 0 else num_bins
    if compatible:
        scaled = float(np.float32(scaled))
    return _round_half_away(scaled)


class HistogramAccumulator:
    """
    Fixed-size pulse-height histogram.

    Only the analysis side writes to it. `snapshot()` hands out read-only
    copies so readers on other threads never see a half-updated array.
    """

    def __init__(self, num_bins: int) -> None:
        num_bins = int(num_bins)
        if num_bins <= 0:
            raise ValueError("num_bins must be positive")
        self._num_bins = num_bins
        self._counts = np.zeros(num_bins, dtype=np.uint64)
        self._lock = threading.Lock()
        self._dropped = 0
        self._last_percent = 0.0

    @property
    def num_bins(self) -> int:
        return self._num_bins

    @property
    def dropped(self) -> int:
        """Events whose bin fell outside ``[0, num_bins)``."""
        return self._dropped

    @property
    def total(self) -> int:
        with self._lock:
            return int(self._counts.sum())

    @property
    def last_percent(self) -> float:
        return self._last_percent

    def clear(self) -> None:
        with self._lock:
            self._counts.fill(0)
            self._dropped = 0
            self._last_percent = 0.0

    def increment(self, index: int) -> bool:
        """Count one event in bin `index`; out-of-range indices are dropped."""
        if 0 <= index < self._num_bins:
            with self._lock:
                self._counts[index] += 1
            return True
        self._dropped += 1
        return False

    def snapshot(self) -> np.ndarray:
        with self._lock:
            counts = self._counts.copy()
        counts.setflags(write=False)
        return counts

    def should_report(self, percent: float, step: float = 1.0) -> bool:
        """True once `percent` has moved more than `step` past the last report."""
        if percent - self._last_percent > step:
            self._last_percent = float(percent)
            return True
        return False


__all__ = ["HistogramAccumulator", "quantize"]
