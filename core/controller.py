from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional, Union

from analysis.settings import AnalyzerSettings, AnalyzerSettingsStore
from daq.base_source import SampleSource
from shared.models import Chunk, EndOfStream, HistogramReady
from shared.rendezvous import Rendezvous, RendezvousClosed

from .analyzer import HistogramCallback, PulseHeightAnalyzer

logger = logging.getLogger(__name__)


class AnalysisController:
    """
    Runs a `SampleSource` through a `PulseHeightAnalyzer`.

    Two modes share the same analyzer and subscriber list:

    - `run()` decodes and analyzes in the calling thread and returns the final
      `HistogramReady`.
    - `start()` spawns a producer thread (decode) and a consumer thread
      (analysis) joined by a single-slot `Rendezvous`, so at most one chunk
      is in flight. `stop()` requests cancellation; `wait()` joins both
      threads and re-raises whatever failed in either of them.

    Settings changes build a fresh analyzer for the next run. They are refused
    while a run is in progress.
    """

    def __init__(
        self,
        settings: Union[AnalyzerSettings, AnalyzerSettingsStore, None] = None,
        *,
        chunk_size: int = 8192,
    ) -> None:
        if not isinstance(chunk_size, int) or chunk_size <= 0:
            raise ValueError("chunk_size must be a positive integer")
        if isinstance(settings, AnalyzerSettingsStore):
            self._store = settings
        else:
            self._store = AnalyzerSettingsStore(settings)
        self._chunk_size = chunk_size
        self._analyzer: Optional[PulseHeightAnalyzer] = None
        self._subscribers: Dict[int, HistogramCallback] = {}
        self._next_token = 0

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._producer: Optional[threading.Thread] = None
        self._consumer: Optional[threading.Thread] = None
        self._channel: Optional[Rendezvous] = None
        self._error: Optional[BaseException] = None
        self._result: Optional[HistogramReady] = None
        self._running = False

        self._unsubscribe_store = self._store.subscribe(self._on_settings_changed, replay=False)

    # ---- Accessors ----------------------------------------------------------

    @property
    def settings(self) -> AnalyzerSettings:
        return self._store.get()

    @property
    def settings_store(self) -> AnalyzerSettingsStore:
        return self._store

    @property
    def analyzer(self) -> Optional[PulseHeightAnalyzer]:
        return self._analyzer

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def result(self) -> Optional[HistogramReady]:
        return self._result

    def subscribe(self, callback: HistogramCallback) -> Callable[[], None]:
        """Receive every `HistogramReady` of every run; returns an unsubscriber."""
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    # ---- Configuration ------------------------------------------------------

    def apply_settings(self, settings: AnalyzerSettings) -> None:
        """Replace the configuration; the next run uses a new analyzer."""
        if self.running:
            raise RuntimeError("cannot change settings while an analysis is running")
        self._store.set(settings)

    def _on_settings_changed(self, settings: AnalyzerSettings) -> None:
        if self.running:
            logger.warning("Settings changed during a run; they apply from the next run on")
            return
        self._analyzer = None

    def _prepare(self, source: SampleSource) -> PulseHeightAnalyzer:
        analyzer = self._analyzer
        if analyzer is None or analyzer.settings is not self._store.get():
            analyzer = PulseHeightAnalyzer(self._store.get())
            analyzer.subscribe(self._publish)
            self._analyzer = analyzer
        analyzer.reset(total_frames=source.total_frames)
        self._error = None
        self._result = None
        self._stop_event.clear()
        return analyzer

    def _publish(self, payload: HistogramReady) -> None:
        for callback in list(self._subscribers.values()):
            try:
                callback(payload)
            except Exception as exc:
                logger.warning("Histogram subscriber failed: %s", exc)

    # ---- Synchronous mode ---------------------------------------------------

    def run(self, source: SampleSource) -> HistogramReady:
        """Analyze `source` to the end (or until `stop()`) in the calling thread."""
        with self._lock:
            if self._running:
                raise RuntimeError("analysis already running")
            self._running = True
        try:
            analyzer = self._prepare(source)
            logger.info("Analysis started (%s frames)", source.total_frames)
            cancelled = False
            for chunk in source.chunks(self._chunk_size):
                if self._stop_event.is_set():
                    cancelled = True
                    break
                analyzer.process_chunk(chunk)
            self._result = self._finish(analyzer, cancelled)
            return self._result
        finally:
            with self._lock:
                self._running = False

    # ---- Threaded mode ------------------------------------------------------

    def start(self, source: SampleSource) -> None:
        with self._lock:
            if self._running:
                raise RuntimeError("analysis already running")
            self._running = True
        try:
            analyzer = self._prepare(source)
        except Exception:
            with self._lock:
                self._running = False
            raise
        channel: Rendezvous = Rendezvous()
        self._channel = channel
        self._consumer = threading.Thread(
            target=self._consume,
            args=(analyzer, channel),
            name="PulseHeightAnalysis",
            daemon=True,
        )
        self._producer = threading.Thread(
            target=self._produce,
            args=(source, channel),
            name="SampleDecode",
            daemon=True,
        )
        logger.info("Analysis started in background (%s frames)", source.total_frames)
        self._consumer.start()
        self._producer.start()

    def stop(self) -> None:
        """Request cancellation; takes effect between chunks."""
        if not self.running:
            logger.warning("stop() requested but no analysis is running")
            return
        self._stop_event.set()

    def wait(self, timeout: Optional[float] = None) -> Optional[HistogramReady]:
        """
        Join the worker threads and return the final histogram.

        Returns None if `timeout` expired first. Raises the first exception
        raised by the producer or the consumer.
        """
        for thread in (self._producer, self._consumer):
            if thread is not None:
                thread.join(timeout)
                if thread.is_alive():
                    return None
        self._producer = None
        self._consumer = None
        self._channel = None
        with self._lock:
            self._running = False
        if self._error is not None:
            error, self._error = self._error, None
            raise error
        return self._result

    def _produce(self, source: SampleSource, channel: Rendezvous) -> None:
        try:
            for chunk in source.chunks(self._chunk_size):
                if self._stop_event.is_set():
                    logger.info("Decoding cancelled at frame %d", source.frames_read)
                    return
                channel.put(chunk)
            channel.put(EndOfStream)
        except RendezvousClosed:
            logger.debug("Consumer closed the channel; decoder exiting")
        except Exception as exc:
            logger.exception("Sample decoding failed")
            self._record_error(exc)
        finally:
            channel.close()

    def _consume(self, analyzer: PulseHeightAnalyzer, channel: Rendezvous) -> None:
        cancelled = False
        try:
            while True:
                item = channel.take()
                if item is None:
                    cancelled = True
                    break
                try:
                    if item is EndOfStream:
                        break
                    # A delivered chunk is always analyzed, even after stop()
                    if isinstance(item, Chunk):
                        analyzer.process_chunk(item)
                finally:
                    channel.done()
                if self._stop_event.is_set():
                    cancelled = True
                    break
            self._result = self._finish(analyzer, cancelled or self._error is not None)
        except Exception as exc:
            logger.exception("Pulse-height analysis failed")
            self._record_error(exc)
        finally:
            channel.close()
            with self._lock:
                self._running = False

    # ---- Helpers ------------------------------------------------------------

    def _finish(self, analyzer: PulseHeightAnalyzer, cancelled: bool) -> HistogramReady:
        if cancelled:
            return analyzer.finish(percent=analyzer.percent, cancelled=True)
        return analyzer.finish()

    def _record_error(self, exc: BaseException) -> None:
        with self._lock:
            if self._error is None:
                self._error = exc

    def close(self) -> None:
        if self.running:
            self.stop()
            try:
                self.wait()
            except Exception as exc:
                logger.debug("Ignoring error from cancelled run during close: %s", exc)
        self._unsubscribe_store()


__all__ = ["AnalysisController"]
