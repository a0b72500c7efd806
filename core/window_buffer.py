from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Optional

import numpy as np

logger = logging.getLogger(__name__)


class WindowBuffer:
    """
    Contiguous working slice of the sample stream with look-back/look-ahead
    margins.

    Layout (``high = 2 * margin``)::

        |<------------- low ------------->|<------ high ------>|
        0                          threshold = low + margin    total

    Samples arrive through `extend()` in chunks of any size. Whatever does not
    fit behind the resident data is staged until the next rehome. Once the
    scan cursor reaches `threshold`, `rehome()` copies the trailing ``high``
    samples to the head, moves the stream offset forward by ``low`` and loads
    up to ``low`` staged samples into the tail. The cursor therefore always
    keeps ``margin`` samples of history, and every sample enters the window
    exactly once.

    All public indices are stream-absolute; `offset` is the stream index of
    ``data[0]``.
    """

    def __init__(
        self,
        low: int,
        margin: int,
        *,
        soft_gain: float = 1.0,
        total_frames: Optional[int] = None,
    ) -> None:
        low = int(low)
        margin = int(margin)
        if low <= 0:
            raise ValueError("low must be positive")
        if margin <= 0:
            raise ValueError("margin must be positive")
        if total_frames is not None and int(total_frames) < 0:
            raise ValueError("total_frames must be non-negative")
        self._low = low
        self._margin = margin
        self._high = 2 * margin
        self._total = low + self._high
        self._threshold = low + margin
        self._soft_gain = float(soft_gain)
        self._total_frames = None if total_frames is None else int(total_frames)

        self._data = np.zeros(self._total, dtype=np.float64)
        self._pending: Deque[np.ndarray] = deque()
        self._pending_count = 0
        self._offset = 0
        self._filled = 0
        self._frames_received = 0
        self._frames_consumed = 0
        self._finished = False
        self._rehomes = 0

    # ---- Geometry ---------------------------------------------------------

    @property
    def low(self) -> int:
        return self._low

    @property
    def high(self) -> int:
        return self._high

    @property
    def margin(self) -> int:
        return self._margin

    @property
    def capacity(self) -> int:
        return self._total

    @property
    def threshold(self) -> int:
        """Relative cursor position at which the window should rehome."""
        return self._threshold

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def end(self) -> int:
        """Stream index one past the last resident sample."""
        return self._offset + self._filled

    @property
    def capacity_end(self) -> int:
        """Stream index one past the last slot of the window."""
        return self._offset + self._total

    @property
    def data(self) -> np.ndarray:
        """The backing array. Only ``data[:filled]`` holds stream samples."""
        return self._data

    @property
    def filled(self) -> int:
        return self._filled

    @property
    def is_full(self) -> bool:
        return self._filled == self._total

    @property
    def pending(self) -> int:
        return self._pending_count

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def rehomes(self) -> int:
        return self._rehomes

    # ---- Progress ---------------------------------------------------------

    @property
    def frames_received(self) -> int:
        return self._frames_received

    @property
    def frames_consumed(self) -> int:
        """Frames loaded into the window so far (staged frames excluded)."""
        return self._frames_consumed

    @property
    def total_frames(self) -> Optional[int]:
        return self._total_frames

    @property
    def progress(self) -> float:
        """Percent of `total_frames` loaded, or 0.0 when the length is unknown."""
        if not self._total_frames:
            return 100.0 if self._finished else 0.0
        return min(100.0, 100.0 * self._frames_consumed / self._total_frames)

    # ---- Input ------------------------------------------------------------

    def extend(self, samples: np.ndarray) -> None:
        """Append the next block of the stream, applying the soft gain."""
        if self._finished:
            raise RuntimeError("cannot extend a finished stream")
        arr = np.asarray(samples, dtype=np.float64)
        if arr.ndim != 1:
            raise ValueError("samples must be 1D")
        if arr.size == 0:
            return
        if self._soft_gain != 1.0:
            arr = arr * self._soft_gain
        else:
            arr = arr.copy()
        self._frames_received += int(arr.size)
        self._pending.append(arr)
        self._pending_count += int(arr.size)
        self._load_pending()

    def mark_finished(self) -> None:
        self._finished = True

    def _load_pending(self) -> None:
        while self._pending and self._filled < self._total:
            head = self._pending[0]
            room = self._total - self._filled
            take = min(room, head.shape[0])
            self._data[self._filled : self._filled + take] = head[:take]
            self._filled += take
            self._frames_consumed += take
            self._pending_count -= take
            if take == head.shape[0]:
                self._pending.popleft()
            else:
                self._pending[0] = head[take:]

    # ---- Rehoming ---------------------------------------------------------

    def rehome(self) -> None:
        """Shift the window forward by `low` samples.

        Raises:
            RuntimeError: If the window is not completely filled.
        """
        if not self.is_full:
            raise RuntimeError("cannot rehome a partially filled window")
        self._data[: self._high] = self._data[self._low :]
        self._offset += self._low
        self._filled = self._high
        self._rehomes += 1
        self._load_pending()
        logger.debug(
            "Window rehomed to offset %d (%d resident, %d staged, %.1f%%)",
            self._offset,
            self._filled,
            self._pending_count,
            self.progress,
        )

    def refill(self, cursor: int) -> bool:
        """Rehome if `cursor` has reached the threshold and the window is full."""
        if cursor - self._offset >= self._threshold and self.is_full:
            self.rehome()
            return True
        return False

    # ---- Access -----------------------------------------------------------

    def is_resident(self, index: int) -> bool:
        return self._offset <= index < self.end

    def at(self, index: int) -> float:
        if not self.is_resident(index):
            raise IndexError(f"stream index {index} is not resident [{self._offset}, {self.end})")
        return float(self._data[index - self._offset])

    def segment(self, start: int, stop: int) -> np.ndarray:
        """Return a copy of stream samples ``[start, stop)``."""
        if stop <= start:
            raise ValueError("stop must be greater than start")
        if start < self._offset or stop > self.end:
            raise IndexError(
                f"segment [{start}, {stop}) is not resident [{self._offset}, {self.end})"
            )
        return self._data[start - self._offset : stop - self._offset].copy()

    def reset(self, *, total_frames: Optional[int] = None) -> None:
        self._data.fill(0.0)
        self._pending.clear()
        self._pending_count = 0
        self._offset = 0
        self._filled = 0
        self._frames_received = 0
        self._frames_consumed = 0
        self._finished = False
        self._rehomes = 0
        self._total_frames = None if total_frames is None else int(total_frames)


__all__ = ["WindowBuffer"]
