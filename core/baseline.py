"""Baseline tracking for the pulse detector.

The baseline is the slowly drifting floor the pulses ride on. It is estimated
with a moving average that only sees "quiet" samples: a sample pair with a
large first difference belongs to a transient, and a sample above the
absolute threshold is probably part of a pulse, so neither may pull the floor
upward.
"""
from __future__ import annotations

import numpy as np


class MovingAverage:
    """
    Fixed-capacity circular accumulator returning a running mean.

    The mean is always taken over the configured capacity, with unwritten slots
    counting as zero. Until `capacity` values have been seen the output is
    therefore biased toward zero (cold start): feeding a constant ``v`` yields
    ``v/N, 2v/N, ..., v``.
    """

    def __init__(self, capacity: int) -> None:
        capacity = int(capacity)
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._data = np.zeros(capacity, dtype=np.float64)
        self._pos = 0
        self._sum = 0.0
        self._count = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def count(self) -> int:
        """Number of values fed since the last reset."""
        return self._count

    @property
    def value(self) -> float:
        return self._sum / self._capacity

    def update(self, value: float) -> float:
        value = float(value)
        evicted = float(self._data[self._pos])
        self._data[self._pos] = value
        self._sum += value - evicted
        self._pos = (self._pos + 1) % self._capacity
        self._count += 1
        return self._sum / self._capacity

    def reset(self) -> None:
        self._data.fill(0.0)
        self._pos = 0
        self._sum = 0.0
        self._count = 0


class BaselineEstimator:
    """Gate a MovingAverage so that only quiet, low samples update the floor."""

    def __init__(self, diff_thresh: float, rel_thresh: float, num_average: int) -> None:
        if diff_thresh <= 0:
            raise ValueError("diff_thresh must be positive")
        self._diff_thresh = float(diff_thresh)
        self._rel_thresh = float(rel_thresh)
        self._average = MovingAverage(num_average)
        self._value = 0.0
        self._updates = 0

    @property
    def value(self) -> float:
        return self._value

    @property
    def updates(self) -> int:
        """How many sample pairs passed the gate since the last reset."""
        return self._updates

    def estimate(self, n0: float, n1: float) -> float:
        """Return the baseline for the adjacent pair ``(n0, n1)``.

        The previous value is held whenever the pair fails the gate.
        """
        if abs(n0 - n1) < self._diff_thresh and n0 < self._rel_thresh:
            self._value = self._average.update(n0)
            self._updates += 1
        return self._value

    def reset(self) -> None:
        self._average.reset()
        self._value = 0.0
        self._updates = 0


__all__ = ["BaselineEstimator", "MovingAverage"]
