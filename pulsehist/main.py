"""Command-line pulse-height analyzer: WAV recording in, histogram CSV out."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from typing import List, Optional, Sequence

from analysis.settings import PRESETS, AnalyzerSettings, preset
from core.controller import AnalysisController
from core.detection import BufferMarginError
from daq.base_source import UnsupportedFormatError
from daq.file_source import WavFileSource
from recording.histogram_writer import write_histogram_csv
from shared.models import HistogramReady

logger = logging.getLogger("pulsehist")

DEFAULT_OUTPUT = "_hist_output_.csv"
# Command-line runs reject single-sample glitches (min glitch 2) unless told otherwise
DEFAULT_PRESET = "6spp_high_suppression"

EXIT_OK = 0
EXIT_ERROR = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pulsehist",
        description="WAV to pulse-height histogram converter.",
        epilog=(
            "examples:\n"
            "  pulsehist -f run.wav\n"
            "  pulsehist -m 2.0 -f run.wav\n"
            "  pulsehist -f run.wav -b 0.005 0.01 -p 0.015 2 10 5"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-f", "--file", required=True, help="mono PCM WAV recording to analyze")
    parser.add_argument(
        "-p",
        "--pulse",
        nargs=4,
        metavar=("TRIG", "GLITCH_MIN", "GLITCH_MAX", "PAST"),
        help="trigger threshold, glitch filter bounds and samples from the past",
    )
    parser.add_argument(
        "-b",
        "--baseline",
        nargs=2,
        metavar=("DIFF", "ABS"),
        type=float,
        help="baseline difference threshold and absolute threshold",
    )
    parser.add_argument("-m", "--gain", type=float, help="software gain for weak signals (default 1.0)")
    parser.add_argument(
        "--preset",
        choices=sorted(PRESETS),
        help=f"start from a named configuration (default {DEFAULT_PRESET}: glitch filter 2..10)",
    )
    parser.add_argument("--config", help="start from settings saved as JSON")
    parser.add_argument("--bins", type=int, help="number of histogram bins (default 1024)")
    parser.add_argument(
        "--skip-to-stop",
        action="store_true",
        help="resume scanning after an accepted pulse's end instead of its peak",
    )
    parser.add_argument(
        "--full-precision",
        action="store_true",
        help="quantize amplitudes in double precision instead of the float32-compatible path",
    )
    parser.add_argument("--chunk-size", type=int, default=8192, help="frames decoded per read")
    parser.add_argument("-o", "--output", default=DEFAULT_OUTPUT, help=f"histogram CSV (default {DEFAULT_OUTPUT})")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="more logging (repeat for debug)")
    return parser


def settings_from_args(args: argparse.Namespace) -> AnalyzerSettings:
    """Base configuration (preset or JSON file) with command-line overrides applied."""
    if args.config:
        settings = AnalyzerSettings.load_json(args.config)
    elif args.preset:
        settings = preset(args.preset)
    else:
        settings = preset(DEFAULT_PRESET)

    if args.pulse:
        trig, glitch_min, glitch_max, past = args.pulse
        try:
            pulse = replace(
                settings.pulse,
                trig_thresh=float(trig),
                min_glitch=int(glitch_min),
                max_glitch=int(glitch_max),
                num_past=int(past),
            )
        except ValueError as exc:
            raise ValueError(f"invalid -p values {args.pulse}: {exc}") from exc
        settings = replace(settings, pulse=pulse)
    if args.baseline:
        diff, absolute = args.baseline
        settings = replace(settings, baseline=replace(settings.baseline, diff_thresh=diff, rel_thresh=absolute))
    if args.gain is not None:
        settings = replace(settings, soft_gain=args.gain)
    if args.bins is not None:
        settings = replace(settings, num_bins=args.bins)
    if args.skip_to_stop:
        settings = replace(settings, pulse=replace(settings.pulse, skip_to_stop=True))
    if args.full_precision:
        settings = replace(settings, compatible_rounding=False)
    settings.validate()
    return settings


def describe_settings(settings: AnalyzerSettings) -> List[str]:
    pulse = settings.pulse
    baseline = settings.baseline
    return [
        "filter settings:",
        f"  baseline: diff_thresh={baseline.diff_thresh:g} abs_thresh={baseline.rel_thresh:g} "
        f"average={baseline.num_average}",
        f"  pulse: trig_thresh={pulse.trig_thresh:g} glitch=({pulse.min_glitch}, {pulse.max_glitch}) "
        f"num_past={pulse.num_past}",
        f"  interpolation: upsample={pulse.upsample_factor} window_half_size={pulse.window_half_size}",
        f"  soft_gain={settings.soft_gain:g} bins={settings.num_bins}",
    ]


class _ProgressLogger:
    """Logs progress every ten percent, and every notification at debug level."""

    def __init__(self) -> None:
        self._next_mark = 10.0

    def __call__(self, payload: HistogramReady) -> None:
        logger.debug("%.1f%% completed, %d pulses", payload.percent, payload.total)
        if payload.final:
            return
        if payload.percent >= self._next_mark:
            logger.info("%.0f%% completed", payload.percent)
            while self._next_mark <= payload.percent:
                self._next_mark += 10.0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        settings = settings_from_args(args)
    except (OSError, ValueError, TypeError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return EXIT_ERROR
    if args.chunk_size <= 0:
        logger.error("--chunk-size must be positive")
        return EXIT_ERROR

    controller = AnalysisController(settings, chunk_size=args.chunk_size)
    controller.subscribe(_ProgressLogger())
    try:
        with WavFileSource(args.file) as source:
            logger.info(
                "frames: %d samplerate: %d",
                source.total_frames,
                source.sample_rate,
            )
            result = controller.run(source)
    except FileNotFoundError as exc:
        logger.error("%s", exc)
        return EXIT_ERROR
    except UnsupportedFormatError as exc:
        logger.error("Unsupported input: %s", exc)
        return EXIT_ERROR
    except BufferMarginError as exc:
        logger.error("Analysis aborted: %s", exc)
        return EXIT_ERROR
    finally:
        controller.close()

    try:
        write_histogram_csv(args.output, result.counts)
    except OSError as exc:
        logger.error("Could not write histogram output %s: %s", args.output, exc)
        return EXIT_ERROR

    stats = controller.analyzer.stats() if controller.analyzer is not None else {}
    summary = describe_settings(settings)
    summary.append(
        f"pulses: {result.total} counted, {stats.get('rejected', 0)} glitches, "
        f"{stats.get('dropped', 0)} out of range"
    )
    summary.append(f"histogram written to {args.output}")
    print("\n".join(summary), file=sys.stdout)
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
