from __future__ import annotations

from enum import Enum
from typing import Callable, Protocol

from shared.models import PulseEvent


class DetectorState(str, Enum):
    IDLE = "idle"
    SEEKING_PEAK = "seeking_peak"
    CLASSIFIED = "classified"


class ScanResult(str, Enum):
    """Why a scan over the window returned."""

    NEED_DATA = "need_data"
    END_OF_STREAM = "end_of_stream"


class BufferMarginError(RuntimeError):
    """
    The window margins are too small for an observed pulse.

    This is a configuration error: continuing would mean reading samples that
    are no longer (or not yet) resident, so the run must be aborted.
    """

    def __init__(self, message: str, *, index: int) -> None:
        super().__init__(f"{message} (stream index {index})")
        self.index = index


PulseListener = Callable[[PulseEvent], None]


class StreamDetector(Protocol):
    """Resumable detector driven by the analyzer over a WindowBuffer."""

    @property
    def state(self) -> DetectorState:
        ...

    def scan(self) -> ScanResult:
        """Consume as much of the window as possible."""
        ...

    def reset(self) -> None:
        """Called when a new run starts."""
        ...


__all__ = [
    "BufferMarginError",
    "DetectorState",
    "PulseListener",
    "ScanResult",
    "StreamDetector",
]
