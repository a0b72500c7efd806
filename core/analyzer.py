from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

import numpy as np

from analysis.settings import AnalyzerSettings
from shared.models import Chunk, HistogramReady

from .baseline import BaselineEstimator
from .detection import PulseHeightDetector, PulseListener, ScanResult
from .histogram import HistogramAccumulator
from .interpolation import SincInterpolator
from .window_buffer import WindowBuffer

logger = logging.getLogger(__name__)

HistogramCallback = Callable[[HistogramReady], None]


class PulseHeightAnalyzer:
    """
    Streaming pulse-height analysis: samples in, histogram out.

    Wires a WindowBuffer, BaselineEstimator, SincInterpolator and
    HistogramAccumulator around a PulseHeightDetector. Feed chunks with
    `process_chunk()` (any size, any number), then call `finish()` once the
    source is exhausted. Subscribers receive a `HistogramReady` whenever the
    reported progress advanced by more than one percent, and a final one from
    `finish()`.
    """

    def __init__(self, settings: Optional[AnalyzerSettings] = None, *, total_frames: Optional[int] = None) -> None:
        settings = settings or AnalyzerSettings()
        settings.validate()
        self._settings = settings
        pulse = settings.pulse
        self._histogram = HistogramAccumulator(settings.num_bins)
        self._baseline = BaselineEstimator(
            settings.baseline.diff_thresh,
            settings.baseline.rel_thresh,
            settings.baseline.num_average,
        )
        self._interpolator = SincInterpolator(pulse.upsample_factor, pulse.window_half_size)
        self._window = WindowBuffer(
            settings.block_size,
            settings.margin,
            soft_gain=settings.soft_gain,
            total_frames=total_frames,
        )
        self._detector = PulseHeightDetector(
            self._window,
            self._baseline,
            self._interpolator,
            self._histogram,
            trig_thresh=pulse.trig_thresh,
            num_past=pulse.num_past,
            min_glitch=pulse.min_glitch,
            max_glitch=pulse.max_glitch,
            window_half_size=pulse.window_half_size,
            skip_to_stop=pulse.skip_to_stop,
            compatible_rounding=settings.compatible_rounding,
        )
        self._subscribers: Dict[int, HistogramCallback] = {}
        self._next_token = 0
        self._percent = 0.0
        self._finished = False

    # ---- Accessors ----------------------------------------------------------

    @property
    def settings(self) -> AnalyzerSettings:
        return self._settings

    @property
    def histogram(self) -> HistogramAccumulator:
        return self._histogram

    @property
    def detector(self) -> PulseHeightDetector:
        return self._detector

    @property
    def window(self) -> WindowBuffer:
        return self._window

    @property
    def baseline(self) -> float:
        return self._baseline.value

    @property
    def percent(self) -> float:
        return self._percent

    @property
    def finished(self) -> bool:
        return self._finished

    def stats(self) -> Dict[str, int]:
        stats = self._detector.stats()
        stats["rehomes"] = self._window.rehomes
        stats["frames"] = self._window.frames_consumed
        return stats

    # ---- Subscriptions ------------------------------------------------------

    def subscribe(self, callback: HistogramCallback) -> Callable[[], None]:
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    def add_pulse_listener(self, callback: PulseListener) -> Callable[[], None]:
        return self._detector.add_listener(callback)

    # ---- Run control --------------------------------------------------------

    def reset(self, *, total_frames: Optional[int] = None) -> None:
        """Clear all run state so the next stream starts from scratch."""
        self._histogram.clear()
        self._baseline.reset()
        self._window.reset(total_frames=total_frames)
        self._detector.reset()
        self._percent = 0.0
        self._finished = False

    def process_chunk(self, chunk: Chunk) -> None:
        percent = chunk.percent if chunk.percent > 0 else None
        self.feed(chunk.samples, percent=percent)

    def feed(self, samples: np.ndarray, *, percent: Optional[float] = None) -> None:
        """Append `samples` to the stream and analyze as far as possible."""
        if self._finished:
            raise RuntimeError("analyzer already finished; call reset() first")
        self._window.extend(samples)
        self._detector.scan()
        if percent is None:
            percent = self._window.progress
        self._percent = max(self._percent, float(percent))
        if self._histogram.should_report(self._percent):
            self._emit(final=False)

    def finish(self, *, percent: float = 100.0, cancelled: bool = False) -> HistogramReady:
        """Drain the stream tail and publish the final histogram."""
        if not self._finished:
            self._window.mark_finished()
            result = self._detector.scan()
            if result is not ScanResult.END_OF_STREAM:  # pragma: no cover - scan drains a finished window
                raise RuntimeError(f"unexpected scan result after end of stream: {result}")
            self._finished = True
            self._percent = float(percent)
            stats = self.stats()
            logger.info(
                "Analysis %s: %d frames, %d pulses counted, %d glitches, %d truncated, %d out of range",
                "cancelled" if cancelled else "finished",
                stats["frames"],
                stats["accepted"] - stats["dropped"],
                stats["rejected"],
                stats["truncated"],
                stats["dropped"],
            )
        return self._emit(final=True, cancelled=cancelled)

    def _emit(self, *, final: bool, cancelled: bool = False) -> HistogramReady:
        payload = HistogramReady(
            counts=self._histogram.snapshot(),
            num_bins=self._histogram.num_bins,
            percent=self._percent,
            final=final,
            cancelled=cancelled,
        )
        for callback in list(self._subscribers.values()):
            try:
                callback(payload)
            except Exception as exc:
                logger.warning("Histogram subscriber failed: %s", exc)
        return payload


def analyze_array(
    samples: np.ndarray,
    settings: Optional[AnalyzerSettings] = None,
    *,
    chunk_size: Optional[int] = None,
) -> np.ndarray:
    """Run a whole in-memory stream through a fresh analyzer and return the counts."""
    arr = np.asarray(samples, dtype=np.float64)
    analyzer = PulseHeightAnalyzer(settings, total_frames=int(arr.size))
    if chunk_size is None:
        analyzer.feed(arr)
    else:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        for begin in range(0, arr.size, chunk_size):
            analyzer.feed(arr[begin : begin + chunk_size])
    return analyzer.finish().counts


__all__ = ["PulseHeightAnalyzer", "analyze_array"]
