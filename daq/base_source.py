from __future__ import annotations

"""
Base class for sample sources feeding the pulse-height analyzer.

Goals:
- One mono stream of float samples in [-1, 1] per source.
- Pull-based: the consumer asks for the next `n` frames; an empty array
  means the stream is exhausted.
- Consistent sequencing and progress across all sources, so the analyzer
  does not care where samples come from.

Subclasses implement `_read_impl()` (and `_close_impl()` when they hold
resources) while relying on the shared bookkeeping here.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Iterator, Optional

import numpy as np

from shared.models import Chunk

logger = logging.getLogger(__name__)


class UnsupportedFormatError(ValueError):
    """The input cannot be decoded into a mono sample stream."""


class SampleSource(ABC):
    """
    Abstract mono sample stream.

    Typical flow:
        with WavFileSource("run.wav") as source:
            for chunk in source.chunks(8192):
                analyzer.process_chunk(chunk)
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._frames_read = 0
        self._next_seq = 0
        self._closed = False

    # ---- Description --------------------------------------------------------

    @property
    @abstractmethod
    def sample_rate(self) -> int:
        raise NotImplementedError

    @property
    @abstractmethod
    def total_frames(self) -> Optional[int]:
        """Stream length in frames, or None when it is not known up front."""
        raise NotImplementedError

    @property
    def frames_read(self) -> int:
        return self._frames_read

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def percent(self) -> float:
        total = self.total_frames
        if not total:
            return 0.0
        return min(100.0, 100.0 * self._frames_read / total)

    # ---- Reading ------------------------------------------------------------

    def read(self, n_frames: int) -> np.ndarray:
        """Return up to `n_frames` samples as a 1D float64 array (empty at the end)."""
        if not isinstance(n_frames, int) or n_frames <= 0:
            raise ValueError("n_frames must be a positive integer")
        with self._lock:
            if self._closed:
                raise RuntimeError("read() on a closed source")
            data = np.asarray(self._read_impl(n_frames), dtype=np.float64)
            if data.ndim != 1:
                raise ValueError("sources must produce 1D sample arrays")
            if data.shape[0] > n_frames:
                raise RuntimeError(
                    f"{type(self).__name__} returned {data.shape[0]} frames, asked for {n_frames}"
                )
            self._frames_read += int(data.shape[0])
            return data

    @abstractmethod
    def _read_impl(self, n_frames: int) -> np.ndarray:
        """Source-specific decode of the next `n_frames` samples."""
        raise NotImplementedError

    def chunks(self, chunk_size: int = 8192) -> Iterator[Chunk]:
        """Yield the rest of the stream as `Chunk`s of at most `chunk_size` frames."""
        if not isinstance(chunk_size, int) or chunk_size <= 0:
            raise ValueError("chunk_size must be a positive integer")
        while True:
            start = self._frames_read
            data = self.read(chunk_size)
            if data.size == 0:
                return
            chunk = Chunk(
                samples=data,
                seq=self._next_seq,
                start_sample=start,
                percent=self.percent,
            )
            self._next_seq += 1
            yield chunk

    # ---- Lifecycle ----------------------------------------------------------

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._close_impl()
            self._closed = True

    def _close_impl(self) -> None:
        """Release source resources. Default: nothing to release."""

    def __enter__(self) -> "SampleSource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["SampleSource", "UnsupportedFormatError"]
