from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, MutableMapping, Optional

import numpy as np


def _freeze_array(array: np.ndarray, *, ndim: int | None = None, dtype=None) -> np.ndarray:
    """Return a read-only, C-contiguous copy of `array`, validating dimensions."""
    arr = np.array(array, copy=True, order="C", dtype=dtype)
    if ndim is not None and arr.ndim != ndim:
        raise ValueError(f"array must be {ndim}D, got {arr.ndim}D")
    arr.setflags(write=False)
    return arr


def _copy_mapping(mapping: Optional[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    if mapping is None:
        return None
    if not isinstance(mapping, Mapping):
        raise TypeError("meta must be a mapping type")
    if isinstance(mapping, MutableMapping):
        return dict(mapping)
    return dict(mapping)


# ----------------------------
# Streaming data models
# ----------------------------

@dataclass(frozen=True)
class Chunk:
    """Block of mono samples handed from a sample source to the analyzer.

    Chunk boundaries carry no meaning: the analyzer treats consecutive chunks
    as one contiguous stream. ``percent`` is the source's progress after this
    chunk and never decreases within a run.
    """

    samples: np.ndarray
    seq: int
    start_sample: int
    percent: float = 0.0
    meta: Optional[Mapping[str, Any]] = field(default=None)

    def __post_init__(self) -> None:
        if self.seq < 0:
            raise ValueError("seq must be non-negative")
        if self.start_sample < 0:
            raise ValueError("start_sample must be non-negative")
        if not 0.0 <= float(self.percent) <= 100.0:
            raise ValueError("percent must be within [0, 100]")

        samples = _freeze_array(self.samples, ndim=1, dtype=np.float64)
        object.__setattr__(self, "samples", samples)
        object.__setattr__(self, "percent", float(self.percent))
        object.__setattr__(self, "meta", _copy_mapping(self.meta))

    @property
    def n_samples(self) -> int:
        return int(self.samples.shape[0])

    @property
    def end_sample(self) -> int:
        return self.start_sample + self.n_samples


def _restore_end_of_stream() -> "_EndOfStreamSentinel":
    return EndOfStream


class _EndOfStreamSentinel:
    __slots__ = ()

    def __repr__(self) -> str:
        return "EndOfStream"

    def __reduce__(self):
        return (_restore_end_of_stream, ())


EndOfStream = _EndOfStreamSentinel()


# ----------------------------
# Detection / histogram models
# ----------------------------

@dataclass(frozen=True)
class PulseEvent:
    """A classified pulse candidate.

    Attributes:
        start: Stream index of the first sample of the extracted segment
            (trigger position minus the look-back count).
        peak: Stream index of the local maximum ending the ascent.
        stop: Stream index one past the last sample of the segment;
            always ``2 * peak - start``.
        width: Segment length without the look-back/look-ahead margins.
        accepted: True if the width passed the glitch filter.
        amplitude: Reconstructed ``max - min`` (None when rejected).
        index: Histogram bin the amplitude quantized to (None when rejected).
        counted: True if ``index`` fell inside the histogram.
    """

    start: int
    peak: int
    stop: int
    width: int
    accepted: bool
    amplitude: Optional[float] = None
    index: Optional[int] = None
    counted: bool = False

    def __post_init__(self) -> None:
        if not self.start <= self.peak <= self.stop:
            raise ValueError("expected start <= peak <= stop")
        if self.stop - self.peak != self.peak - self.start:
            raise ValueError("pulse extent must be symmetric around the peak")

    @property
    def n_samples(self) -> int:
        return self.stop - self.start


@dataclass(frozen=True)
class HistogramReady:
    """Notification carrying a snapshot of the histogram.

    ``counts`` is a read-only copy, so subscribers can keep it around while
    the analyzer continues to accumulate.
    """

    counts: np.ndarray = field(repr=False)
    num_bins: int
    percent: float
    final: bool = False
    cancelled: bool = False

    def __post_init__(self) -> None:
        counts = _freeze_array(self.counts, ndim=1)
        if counts.shape[0] != self.num_bins:
            raise ValueError("counts length must match num_bins")
        object.__setattr__(self, "counts", counts)

    @property
    def total(self) -> int:
        return int(self.counts.sum())


__all__ = [
    "Chunk",
    "EndOfStream",
    "HistogramReady",
    "PulseEvent",
]
