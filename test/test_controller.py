"""
Tests for AnalysisController run modes, cancellation and error propagation.
"""
from __future__ import annotations

import threading
import time
from dataclasses import replace
from typing import List

import numpy as np
import pytest

from analysis.settings import AnalyzerSettings, AnalyzerSettingsStore
from core.analyzer import PulseHeightAnalyzer, analyze_array
from core.controller import AnalysisController
from daq.array_source import ArraySource
from daq.simulated_source import SimulatedPulseSource
from shared.models import HistogramReady
from shared.rendezvous import Rendezvous

AMPLITUDES = np.linspace(0.05, 0.9, 80)


class GatedSource(ArraySource):
    """ArraySource that blocks every read after the first `open_reads` until released."""

    def __init__(self, samples: np.ndarray, open_reads: int) -> None:
        super().__init__(samples)
        self.gate = threading.Event()
        self.reads = 0
        self._open_reads = open_reads

    def _read_impl(self, n_frames: int) -> np.ndarray:
        self.reads += 1
        if self.reads > self._open_reads:
            self.gate.wait(5.0)
        return super()._read_impl(n_frames)


class FailingSource(ArraySource):
    def _read_impl(self, n_frames: int) -> np.ndarray:
        if self.frames_read > 0:
            raise OSError("disk went away")
        return super()._read_impl(n_frames)


def wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.005)


@pytest.fixture
def pulses() -> np.ndarray:
    return SimulatedPulseSource(AMPLITUDES, noise=0.001, seed=1).signal


class TestSynchronousRun:
    def test_run_matches_analyze_array(self, pulses):
        controller = AnalysisController(chunk_size=500)
        result = controller.run(ArraySource(pulses))
        assert result.final and not result.cancelled
        np.testing.assert_array_equal(result.counts, analyze_array(pulses))
        assert controller.result is result
        assert not controller.running

    def test_subscribers_see_progress_and_final(self, pulses):
        controller = AnalysisController(chunk_size=256)
        payloads: List[HistogramReady] = []
        controller.subscribe(payloads.append)
        controller.run(ArraySource(pulses))
        assert len(payloads) > 2
        assert payloads[-1].final
        assert [p.final for p in payloads].count(True) == 1

    def test_second_run_starts_from_scratch(self, pulses):
        controller = AnalysisController(chunk_size=1000)
        first = controller.run(ArraySource(pulses))
        second = controller.run(ArraySource(pulses))
        np.testing.assert_array_equal(first.counts, second.counts)


class TestThreadedRun:
    def test_start_wait_matches_synchronous_run(self, pulses):
        controller = AnalysisController(chunk_size=333)
        controller.start(ArraySource(pulses))
        result = controller.wait(timeout=10.0)
        assert result is not None and result.final
        np.testing.assert_array_equal(result.counts, analyze_array(pulses))
        assert not controller.running

    def test_stop_cancels_between_chunks(self, pulses):
        source = GatedSource(pulses, open_reads=3)
        controller = AnalysisController(chunk_size=100)
        payloads: List[HistogramReady] = []
        controller.subscribe(payloads.append)
        controller.start(source)
        wait_for(lambda: source.reads > 3)
        controller.stop()
        source.gate.set()
        result = controller.wait(timeout=10.0)
        assert result is not None
        assert result.final and result.cancelled
        assert result.percent < 100.0
        assert payloads[-1] is result or payloads[-1].cancelled

    def test_chunk_delivered_before_stop_is_analyzed(self, pulses):
        controller = AnalysisController(chunk_size=pulses.size)
        source = ArraySource(pulses)
        analyzer = controller._prepare(source)
        chunk = next(source.chunks(pulses.size))
        channel: Rendezvous = Rendezvous()
        handoff = threading.Thread(target=channel.put, args=(chunk,), daemon=True)
        handoff.start()
        controller._stop_event.set()

        controller._consume(analyzer, channel)
        handoff.join(5.0)

        assert not handoff.is_alive()
        assert analyzer.window.frames_consumed == pulses.size
        assert controller.result is not None and controller.result.cancelled
        np.testing.assert_array_equal(controller.result.counts, analyze_array(pulses))

    def test_running_clears_when_the_run_ends(self, pulses):
        controller = AnalysisController(chunk_size=500)
        controller.start(ArraySource(pulses))
        wait_for(lambda: not controller.running)
        controller.apply_settings(replace(AnalyzerSettings(), num_bins=512))
        result = controller.wait(timeout=10.0)
        assert result is not None and result.final and not result.cancelled
        assert result.num_bins == 1024
        assert controller.settings.num_bins == 512

    def test_consumer_error_is_reraised_from_wait(self, pulses, monkeypatch):
        def boom(self, chunk):
            raise RuntimeError("analysis exploded")

        monkeypatch.setattr(PulseHeightAnalyzer, "process_chunk", boom)
        controller = AnalysisController(chunk_size=100)
        controller.start(ArraySource(pulses))
        with pytest.raises(RuntimeError, match="exploded"):
            controller.wait(timeout=10.0)
        assert not controller.running

    def test_producer_error_is_reraised_from_wait(self, pulses):
        controller = AnalysisController(chunk_size=100)
        controller.start(FailingSource(pulses))
        with pytest.raises(OSError, match="disk"):
            controller.wait(timeout=10.0)

    def test_cannot_start_twice(self, pulses):
        source = GatedSource(pulses, open_reads=0)
        controller = AnalysisController(chunk_size=100)
        controller.start(source)
        try:
            with pytest.raises(RuntimeError):
                controller.start(ArraySource(pulses))
            with pytest.raises(RuntimeError):
                controller.run(ArraySource(pulses))
        finally:
            controller.stop()
            source.gate.set()
            controller.wait(timeout=10.0)


class TestSettings:
    def test_apply_settings_refused_while_running(self, pulses):
        source = GatedSource(pulses, open_reads=0)
        controller = AnalysisController(chunk_size=100)
        controller.start(source)
        try:
            with pytest.raises(RuntimeError):
                controller.apply_settings(replace(AnalyzerSettings(), num_bins=512))
        finally:
            controller.stop()
            source.gate.set()
            controller.wait(timeout=10.0)
        assert controller.settings.num_bins == 1024

    def test_new_settings_build_a_new_analyzer(self, pulses):
        controller = AnalysisController(chunk_size=1000)
        controller.run(ArraySource(pulses))
        first = controller.analyzer
        controller.apply_settings(replace(AnalyzerSettings(), num_bins=512))
        result = controller.run(ArraySource(pulses))
        assert controller.analyzer is not first
        assert result.num_bins == 512

    def test_shared_store_changes_apply_to_next_run(self, pulses):
        store = AnalyzerSettingsStore()
        controller = AnalysisController(store, chunk_size=1000)
        store.update(num_bins=256)
        result = controller.run(ArraySource(pulses))
        assert result.num_bins == 256
        controller.close()

    def test_stop_while_idle_only_warns(self, caplog):
        controller = AnalysisController()
        controller.stop()
        assert "no analysis is running" in caplog.text

    def test_rejects_bad_chunk_size(self):
        with pytest.raises(ValueError):
            AnalysisController(chunk_size=0)
