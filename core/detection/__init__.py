from .base import (
    BufferMarginError,
    DetectorState,
    PulseListener,
    ScanResult,
    StreamDetector,
)
from .pulse_height import PulseHeightDetector

__all__ = [
    "BufferMarginError",
    "DetectorState",
    "PulseHeightDetector",
    "PulseListener",
    "ScanResult",
    "StreamDetector",
]
