"""
Integration tests for the pulsehist command line: WAV file in, CSV out.
"""
from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from analysis.settings import AnalyzerSettings, PulseSettings, preset
from daq.simulated_source import SimulatedPulseSource
from pulsehist.main import DEFAULT_OUTPUT, DEFAULT_PRESET, build_parser, main, settings_from_args
from recording.histogram_writer import read_histogram_csv
from test.fixtures.signal_generators import write_pcm_wav

BINS = np.array([60, 150, 150, 400, 512, 777, 900])


@pytest.fixture
def recording(tmp_path: Path):
    source = SimulatedPulseSource(BINS / 1024.0, spacing=80)
    path = write_pcm_wav(tmp_path / "run.wav", source.signal, sample_width=2, sample_rate=96_000)
    return path, source


def test_writes_expected_histogram(tmp_path: Path, recording, capsys):
    path, source = recording
    out = tmp_path / "hist.csv"
    assert main(["-f", str(path), "-o", str(out)]) == 0
    counts = read_histogram_csv(out)
    np.testing.assert_array_equal(counts, source.expected_counts(1024))
    printed = capsys.readouterr().out
    assert "filter settings" in printed
    assert "7 counted" in printed


def test_default_output_name(tmp_path: Path, recording, monkeypatch):
    path, _ = recording
    monkeypatch.chdir(tmp_path)
    assert main(["-f", str(path)]) == 0
    assert (tmp_path / DEFAULT_OUTPUT).exists()


def test_bins_option(tmp_path: Path, recording):
    path, _ = recording
    out = tmp_path / "hist.csv"
    assert main(["-f", str(path), "-o", str(out), "--bins", "256"]) == 0
    counts = read_histogram_csv(out)
    assert counts.size == 256
    assert counts.sum() == len(BINS)


def test_trigger_above_every_pulse_counts_nothing(tmp_path: Path, recording):
    path, _ = recording
    out = tmp_path / "hist.csv"
    assert main(["-f", str(path), "-o", str(out), "-p", "0.99", "1", "10", "5"]) == 0
    assert read_histogram_csv(out).sum() == 0


class TestSettingsFromArgs:
    def parse(self, *argv):
        return settings_from_args(build_parser().parse_args(["-f", "x.wav", *argv]))

    def test_defaults_suppress_single_sample_glitches(self):
        cfg = self.parse()
        assert cfg == preset(DEFAULT_PRESET)
        assert (cfg.pulse.min_glitch, cfg.pulse.max_glitch) == (2, 10)
        assert (cfg.pulse.trig_thresh, cfg.pulse.num_past) == (0.015, 5)

    def test_overrides(self):
        cfg = self.parse("-p", "0.02", "2", "12", "6", "-b", "0.004", "0.02", "-m", "2.5")
        assert cfg.pulse == PulseSettings(trig_thresh=0.02, min_glitch=2, max_glitch=12, num_past=6)
        assert (cfg.baseline.diff_thresh, cfg.baseline.rel_thresh) == (0.004, 0.02)
        assert cfg.soft_gain == 2.5

    def test_preset_then_override(self):
        cfg = self.parse("--preset", "10spp", "-m", "2.0")
        assert cfg.pulse.num_past == 8
        assert cfg.soft_gain == 2.0

    def test_config_file(self, tmp_path: Path):
        path = tmp_path / "cfg.json"
        AnalyzerSettings(num_bins=2048).save_json(path)
        cfg = self.parse("--config", str(path), "--full-precision", "--skip-to-stop")
        assert cfg.num_bins == 2048
        assert not cfg.compatible_rounding
        assert cfg.pulse.skip_to_stop


class TestErrors:
    def test_missing_file_exits_1(self, tmp_path: Path):
        assert main(["-f", str(tmp_path / "absent.wav"), "-o", str(tmp_path / "h.csv")]) == 1

    def test_stereo_file_exits_1(self, tmp_path: Path):
        stereo = np.zeros((100, 2))
        path = write_pcm_wav(tmp_path / "stereo.wav", stereo, channels=2)
        assert main(["-f", str(path), "-o", str(tmp_path / "h.csv")]) == 1
        assert not (tmp_path / "h.csv").exists()

    def test_invalid_pulse_settings_exit_1(self, recording, tmp_path: Path):
        path, _ = recording
        assert main(["-f", str(path), "-p", "0.015", "10", "5", "5", "-o", str(tmp_path / "h.csv")]) == 1
        assert main(["-f", str(path), "-p", "0.015", "one", "5", "5"]) == 1

    def test_usage_error_exits_2(self):
        with pytest.raises(SystemExit) as excinfo:
            main(["-p", "0.1"])
        assert excinfo.value.code == 2
