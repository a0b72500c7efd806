from __future__ import annotations

from typing import Optional

import numpy as np

from .base_source import SampleSource


class ArraySource(SampleSource):
    """In-memory stream over a 1D numpy array (tests, notebooks, replays)."""

    def __init__(self, samples: np.ndarray, sample_rate: int = 44_100) -> None:
        super().__init__()
        arr = np.array(samples, dtype=np.float64, copy=True)
        if arr.ndim != 1:
            raise ValueError("samples must be 1D")
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        arr.setflags(write=False)
        self._samples = arr
        self._sample_rate = int(sample_rate)
        self._pos = 0

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def total_frames(self) -> Optional[int]:
        return int(self._samples.shape[0])

    def _read_impl(self, n_frames: int) -> np.ndarray:
        data = self._samples[self._pos : self._pos + n_frames]
        self._pos += int(data.shape[0])
        return data


__all__ = ["ArraySource"]
