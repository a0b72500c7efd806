"""Unit tests for amplitude quantization and the histogram accumulator."""
from __future__ import annotations

import threading

import numpy as np
import pytest

from core.histogram import HistogramAccumulator, quantize


class TestQuantize:
    @pytest.mark.parametrize(
        "amplitude, expected",
        [
            (0.0, 0),
            (0.5, 512),
            (100 / 1024, 100),
            (100.5 / 1024, 101),  # halves round away from zero
            (100.49 / 1024, 100),
            (-0.5 / 1024, -1),
            (1023 / 1024, 1023),
            (1.0, 1024),
        ],
    )
    def test_rounds_half_away_from_zero(self, amplitude, expected):
        assert quantize(amplitude, 1024) == expected

    def test_compatible_path_rounds_through_float32(self):
        # 2.4999999 is 2.5 in float32, so only the full-precision path rounds down
        amplitude = 2.4999999 / 1024
        assert quantize(amplitude, 1024, compatible=True) == 3
        assert quantize(amplitude, 1024, compatible=False) == 2

    def test_non_finite_amplitudes_fall_outside(self):
        assert quantize(float("nan"), 1024) == 1024
        assert quantize(float("inf"), 1024) == 1024
        assert quantize(float("-inf"), 1024) == -1
        assert quantize(1e300, 1024) == 1024


class TestHistogramAccumulator:
    def test_increment_and_snapshot(self):
        hist = HistogramAccumulator(8)
        assert hist.increment(3)
        assert hist.increment(3)
        assert hist.increment(0)
        snap = hist.snapshot()
        np.testing.assert_array_equal(snap, [1, 0, 0, 2, 0, 0, 0, 0])
        assert hist.total == 3

    def test_snapshot_is_a_read_only_copy(self):
        hist = HistogramAccumulator(4)
        snap = hist.snapshot()
        hist.increment(1)
        assert snap[1] == 0
        with pytest.raises(ValueError):
            snap[0] = 5

    @pytest.mark.parametrize("index", [-1, 8, 1000])
    def test_out_of_range_is_dropped_silently(self, index):
        hist = HistogramAccumulator(8)
        assert hist.increment(index) is False
        assert hist.total == 0
        assert hist.dropped == 1

    def test_clear_resets_counts_and_progress(self):
        hist = HistogramAccumulator(8)
        hist.increment(2)
        hist.increment(99)
        hist.should_report(50.0)
        hist.clear()
        assert hist.total == 0
        assert hist.dropped == 0
        assert hist.last_percent == 0.0

    def test_reports_only_after_more_than_one_percent(self):
        hist = HistogramAccumulator(8)
        assert not hist.should_report(1.0)
        assert hist.should_report(1.5)
        assert not hist.should_report(2.5)
        assert hist.should_report(2.6)
        assert hist.last_percent == 2.6

    def test_concurrent_snapshots_see_whole_counts(self):
        hist = HistogramAccumulator(4)
        stop = threading.Event()
        seen = []

        def reader():
            while not stop.is_set():
                seen.append(int(hist.snapshot().sum()))

        t = threading.Thread(target=reader)
        t.start()
        for _ in range(5000):
            hist.increment(2)
        stop.set()
        t.join()
        assert seen == sorted(seen)
        assert hist.total == 5000

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            HistogramAccumulator(0)
