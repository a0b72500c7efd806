from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from shared.models import PulseEvent

from ..baseline import BaselineEstimator
from ..histogram import HistogramAccumulator, quantize
from ..interpolation import SincInterpolator
from ..window_buffer import WindowBuffer
from .base import BufferMarginError, DetectorState, PulseListener, ScanResult

logger = logging.getLogger(__name__)


class PulseHeightDetector:
    """
    Edge-triggered pulse extraction over a WindowBuffer.

    Scanning (IDLE) walks the cursor one sample at a time. At cursor ``m`` the
    baseline is updated from the pair ``(x[m], x[m+1])``; a rising edge whose
    upper sample exceeds the baseline by more than `trig_thresh` opens a
    candidate with ``start = m - num_past``. The cursor then climbs while the
    signal keeps rising (SEEKING_PEAK). The first non-rising index is the
    peak, and the pulse is assumed to be symmetric around it:
    ``stop = 2 * peak - start``.

    Candidates whose width (the extent without the two look-back margins) lies
    strictly inside ``(min_glitch, max_glitch)`` are upsampled, their
    ``max - min`` is quantized and counted. Everything else is a glitch and
    the scan resumes one sample after the peak.

    The detector never reads a sample that is not resident. When it runs out
    of input it returns `ScanResult.NEED_DATA` and resumes from exactly the
    same state on the next call, so the outcome does not depend on how the
    stream was chunked. Indices are stream-absolute throughout, which keeps a
    candidate valid across a rehome of the window.
    """

    name = "pulse_height"

    def __init__(
        self,
        window: WindowBuffer,
        baseline: BaselineEstimator,
        interpolator: SincInterpolator,
        histogram: HistogramAccumulator,
        *,
        trig_thresh: float,
        num_past: int,
        min_glitch: int,
        max_glitch: int,
        window_half_size: int = 0,
        skip_to_stop: bool = False,
        compatible_rounding: bool = True,
    ) -> None:
        if num_past < 0:
            raise ValueError("num_past must be non-negative")
        if window_half_size < 0:
            raise ValueError("window_half_size must be non-negative")
        if max_glitch <= min_glitch:
            raise ValueError("max_glitch must be greater than min_glitch")
        self._window = window
        self._baseline = baseline
        self._interpolator = interpolator
        self._histogram = histogram
        self._trig_thresh = float(trig_thresh)
        self._num_past = int(num_past)
        self._min_glitch = int(min_glitch)
        self._max_glitch = int(max_glitch)
        self._first = self._num_past + int(window_half_size)
        self._skip_to_stop = bool(skip_to_stop)
        self._compatible = bool(compatible_rounding)
        self._listeners: Dict[int, PulseListener] = {}
        self._next_token = 0
        self.reset()

    # ---- State --------------------------------------------------------------

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def cursor(self) -> int:
        """Stream index of the scan position."""
        return self._cursor

    @property
    def samples_scanned(self) -> int:
        return self._scanned

    def stats(self) -> Dict[str, int]:
        return {
            "accepted": self._accepted,
            "rejected": self._rejected,
            "truncated": self._truncated,
            "dropped": self._histogram.dropped,
            "scanned": self._scanned,
        }

    def reset(self) -> None:
        self._state = DetectorState.IDLE
        self._cursor = self._first
        self._trigger = -1
        self._start = -1
        self._doomed = False
        self._scanned = 0
        self._accepted = 0
        self._rejected = 0
        self._truncated = 0

    def add_listener(self, callback: PulseListener) -> Callable[[], None]:
        """Call `callback` with every classified candidate; returns an unsubscriber."""
        token = self._next_token
        self._next_token += 1
        self._listeners[token] = callback

        def remove() -> None:
            self._listeners.pop(token, None)

        return remove

    # ---- Scanning -----------------------------------------------------------

    def scan(self) -> ScanResult:
        window = self._window
        while True:
            if self._state is DetectorState.SEEKING_PEAK:
                result = self._seek_peak()
                if result is not None:
                    return result
                continue

            m = self._cursor
            window.refill(m)
            ready = self._require(m + 1, keep_from=None)
            if ready is None:
                return ScanResult.END_OF_STREAM
            if not ready:
                return ScanResult.NEED_DATA

            data = window.data
            rel = m - window.offset
            n0 = data[rel]
            n1 = data[rel + 1]
            baseline = self._baseline.estimate(n0, n1)
            self._scanned += 1
            if n0 < n1 and (n1 - baseline) > self._trig_thresh:
                self._trigger = m
                self._start = m - self._num_past
                self._doomed = False
                self._state = DetectorState.SEEKING_PEAK
            else:
                self._cursor = m + 1

    def _require(self, index: int, keep_from: Optional[int]) -> Optional[bool]:
        """
        Make stream sample `index` resident.

        Returns True when it is, False when more input is needed, and None when
        the stream ended before `index`. The window is rehomed as needed, but
        never past `keep_from`.

        Raises:
            BufferMarginError: If reaching `index` would evict `keep_from`.
        """
        window = self._window
        while index >= window.capacity_end:
            if not window.is_full:
                return None if window.finished else False
            if keep_from is not None and keep_from < window.offset + window.low:
                raise BufferMarginError(
                    f"window margin of {window.margin} samples is too small: reaching "
                    f"sample {index} would evict the pulse start at {keep_from}",
                    index=index,
                )
            window.rehome()
        if index >= window.end:
            return None if window.finished else False
        return True

    def _seek_peak(self) -> Optional[ScanResult]:
        window = self._window
        m = self._cursor
        while True:
            ready = self._require(m + 1, keep_from=None if self._doomed else self._start)
            if not ready:
                self._cursor = m
                if ready is None:
                    self._discard_truncated(m)
                    return ScanResult.END_OF_STREAM
                return ScanResult.NEED_DATA
            data = window.data
            rel = m - window.offset
            if data[rel] < data[rel + 1]:
                m += 1
                self._scanned += 1
                if not self._doomed and 2 * (m - self._trigger) >= self._max_glitch:
                    # Already too wide to be accepted; its start may be evicted.
                    self._doomed = True
            else:
                break
        self._cursor = m
        return self._classify(m)

    def _classify(self, peak: int) -> Optional[ScanResult]:
        start = self._start
        stop = 2 * peak - start
        width = (stop - start) - 2 * self._num_past

        if self._min_glitch < width < self._max_glitch:
            ready = self._require(stop - 1, keep_from=start)
            if not ready:
                if ready is None:
                    self._discard_truncated(peak)
                    return ScanResult.END_OF_STREAM
                return ScanResult.NEED_DATA
            segment = self._window.segment(start, stop)
            upsampled = self._interpolator.upsample(segment, 0.0)
            amplitude = float(upsampled.max() - upsampled.min())
            index = quantize(amplitude, self._histogram.num_bins, compatible=self._compatible)
            counted = self._histogram.increment(index)
            self._accepted += 1
            event = PulseEvent(
                start=start,
                peak=peak,
                stop=stop,
                width=width,
                accepted=True,
                amplitude=amplitude,
                index=index,
                counted=counted,
            )
            self._cursor = stop if self._skip_to_stop else peak
        else:
            self._rejected += 1
            event = PulseEvent(start=start, peak=peak, stop=stop, width=width, accepted=False)
            self._cursor = peak + 1

        # Listeners see the classified candidate before scanning resumes
        self._state = DetectorState.CLASSIFIED
        try:
            self._notify(event)
        finally:
            self._state = DetectorState.IDLE
        return None

    def _discard_truncated(self, position: int) -> None:
        self._truncated += 1
        self._state = DetectorState.IDLE
        logger.debug(
            "Discarding pulse starting at %d: stream ended at %d before it closed",
            self._start,
            position,
        )

    def _notify(self, event: PulseEvent) -> None:
        if not self._listeners:
            return
        for callback in list(self._listeners.values()):
            try:
                callback(event)
            except Exception as exc:
                logger.warning("Pulse listener failed: %s", exc)


__all__ = ["PulseHeightDetector"]
