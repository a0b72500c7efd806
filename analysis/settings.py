from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BaselineSettings:
    """Gate and averaging length of the baseline estimator."""

    diff_thresh: float = 0.005  # max |x[m] - x[m+1]| for a quiet pair
    rel_thresh: float = 0.01  # absolute ceiling for a baseline sample
    num_average: int = 20

    def validate(self) -> None:
        if self.diff_thresh <= 0:
            raise ValueError("baseline diff_thresh must be positive")
        if self.num_average <= 0:
            raise ValueError("baseline num_average must be positive")


@dataclass(frozen=True)
class PulseSettings:
    """Trigger, glitch filter and interpolation parameters."""

    trig_thresh: float = 0.015
    num_past: int = 5
    min_glitch: int = 1
    max_glitch: int = 10
    upsample_factor: int = 7
    window_half_size: int = 15
    skip_to_stop: bool = False

    def validate(self) -> None:
        if self.trig_thresh < 0:
            raise ValueError("trig_thresh must be non-negative")
        if self.num_past < 0:
            raise ValueError("num_past must be non-negative")
        if self.min_glitch < 0:
            raise ValueError("min_glitch must be non-negative")
        if self.max_glitch <= self.min_glitch:
            raise ValueError("max_glitch must be greater than min_glitch")
        if self.upsample_factor < 1:
            raise ValueError("upsample_factor must be >= 1")
        if self.window_half_size < 1:
            raise ValueError("window_half_size must be >= 1")


@dataclass(frozen=True)
class AnalyzerSettings:
    """
    Complete, immutable configuration of one analysis run.

    Changing any value means building a new analyzer; there is no way to
    retune a running one.
    """

    baseline: BaselineSettings = field(default_factory=BaselineSettings)
    pulse: PulseSettings = field(default_factory=PulseSettings)
    soft_gain: float = 1.0
    num_bins: int = 1024
    block_size: int = 131072  # fresh samples loaded per window rehome
    margin: int = 512  # look-back/look-ahead kept across a rehome
    compatible_rounding: bool = True

    def validate(self) -> None:
        self.baseline.validate()
        self.pulse.validate()
        if self.soft_gain <= 0:
            raise ValueError("soft_gain must be positive")
        if self.num_bins <= 0:
            raise ValueError("num_bins must be positive")
        if self.block_size <= 0:
            raise ValueError("block_size must be positive")
        if self.margin <= 0:
            raise ValueError("margin must be positive")
        pulse = self.pulse
        look_back = pulse.num_past + pulse.window_half_size
        if self.margin < look_back:
            raise ValueError(
                f"margin ({self.margin}) must cover num_past + window_half_size ({look_back})"
            )
        span = pulse.max_glitch + 2 * pulse.num_past
        if 2 * self.margin < span:
            raise ValueError(
                f"2 * margin ({2 * self.margin}) must cover the widest acceptable pulse ({span})"
            )
        if self.block_size < pulse.max_glitch + pulse.num_past:
            raise ValueError("block_size must be at least max_glitch + num_past")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AnalyzerSettings":
        if not isinstance(payload, Mapping):
            raise TypeError("settings payload must be a mapping")
        base = cls()
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in payload:
                continue
            value = payload[f.name]
            if f.name == "baseline":
                value = _section(BaselineSettings, value)
            elif f.name == "pulse":
                value = _section(PulseSettings, value)
            else:
                value = type(getattr(base, f.name))(value)
            kwargs[f.name] = value
        unknown = set(payload) - {f.name for f in fields(cls)}
        if unknown:
            logger.warning("Ignoring unknown settings keys: %s", ", ".join(sorted(unknown)))
        return cls(**kwargs)

    def save_json(self, path: Union[str, Path]) -> None:
        path = Path(path)
        path.write_text(json.dumps(self.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
        logger.info("Saved analyzer settings to %s", path)

    @classmethod
    def load_json(cls, path: Union[str, Path]) -> "AnalyzerSettings":
        path = Path(path)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid settings file {path}: {exc}") from exc
        settings = cls.from_dict(payload)
        settings.validate()
        return settings


def _section(cls, value: Any):
    if isinstance(value, cls):
        return value
    if not isinstance(value, Mapping):
        raise TypeError(f"{cls.__name__} section must be a mapping")
    defaults = cls()
    kwargs = {}
    for f in fields(cls):
        if f.name in value:
            kwargs[f.name] = type(getattr(defaults, f.name))(value[f.name])
    return cls(**kwargs)


def _high_gain(factor: float) -> AnalyzerSettings:
    base = AnalyzerSettings()
    return replace(
        base,
        baseline=replace(
            base.baseline,
            diff_thresh=factor * base.baseline.diff_thresh,
            rel_thresh=factor * base.baseline.rel_thresh,
        ),
        pulse=replace(base.pulse, trig_thresh=factor * base.pulse.trig_thresh),
        soft_gain=factor,
    )


PRESETS: Dict[str, AnalyzerSettings] = {
    "6spp": AnalyzerSettings(),
    "6spp_high_suppression": AnalyzerSettings(pulse=PulseSettings(min_glitch=2)),
    "6spp_high_gain": _high_gain(3.0),
    "10spp": AnalyzerSettings(
        pulse=PulseSettings(num_past=8, max_glitch=25, upsample_factor=7, window_half_size=22)
    ),
}


def preset(name: str) -> AnalyzerSettings:
    """Return one of the named starting configurations (6 or 10 samples per pulse)."""
    try:
        return PRESETS[name]
    except KeyError:
        available = ", ".join(sorted(PRESETS))
        raise ValueError(f"Unknown preset {name!r}; available: {available}") from None


class AnalyzerSettingsStore:
    """
    Thread-safe settings container that lets the controller observe changes
    made elsewhere (e.g. a front end editing the configuration).
    """

    def __init__(self, initial: Optional[AnalyzerSettings] = None) -> None:
        self._settings = initial or AnalyzerSettings()
        self._settings.validate()
        self._lock = threading.Lock()
        self._subscribers: Dict[int, Callable[[AnalyzerSettings], None]] = {}
        self._next_token = 0

    def get(self) -> AnalyzerSettings:
        with self._lock:
            return self._settings

    def set(self, settings: AnalyzerSettings) -> AnalyzerSettings:
        settings.validate()
        with self._lock:
            self._settings = settings
            callbacks = list(self._subscribers.values())
        self._notify(callbacks, settings)
        return settings

    def update(self, **kwargs) -> AnalyzerSettings:
        with self._lock:
            new_settings = replace(self._settings, **kwargs)
        return self.set(new_settings)

    def subscribe(self, callback: Callable[[AnalyzerSettings], None], *, replay: bool = True) -> Callable[[], None]:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers[token] = callback
            snapshot = self._settings
        if replay:
            callback(snapshot)

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    @staticmethod
    def _notify(callbacks, settings: AnalyzerSettings) -> None:
        for callback in callbacks:
            try:
                callback(settings)
            except Exception as exc:
                logger.debug("Settings subscriber callback failed: %s", exc)
                continue


__all__ = [
    "AnalyzerSettings",
    "AnalyzerSettingsStore",
    "BaselineSettings",
    "PRESETS",
    "PulseSettings",
    "preset",
]
