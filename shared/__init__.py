"""
Shared data structures passed between sample sources, the analyzer and
whatever consumes its histograms.
"""

from .models import Chunk, EndOfStream, HistogramReady, PulseEvent
from .rendezvous import Rendezvous, RendezvousClosed

__all__ = ["Chunk", "EndOfStream", "HistogramReady", "PulseEvent", "Rendezvous", "RendezvousClosed"]
