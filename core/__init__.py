"""Core pulse-height analysis pipeline."""

from .analyzer import PulseHeightAnalyzer, analyze_array
from .baseline import BaselineEstimator, MovingAverage
from .controller import AnalysisController
from .detection import BufferMarginError, DetectorState, PulseHeightDetector, ScanResult
from .histogram import HistogramAccumulator, quantize
from .interpolation import SincInterpolator, SincKernel
from .window_buffer import WindowBuffer
from shared.models import Chunk, EndOfStream, HistogramReady, PulseEvent

__all__ = [
    "AnalysisController",
    "BaselineEstimator",
    "BufferMarginError",
    "Chunk",
    "DetectorState",
    "EndOfStream",
    "HistogramAccumulator",
    "HistogramReady",
    "MovingAverage",
    "PulseEvent",
    "PulseHeightAnalyzer",
    "PulseHeightDetector",
    "ScanResult",
    "SincInterpolator",
    "SincKernel",
    "WindowBuffer",
    "analyze_array",
    "quantize",
]
