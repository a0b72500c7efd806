# daq/file_source.py
"""File-based sample source decoding mono PCM WAV recordings."""

from __future__ import annotations

import logging
import wave
from pathlib import Path
from typing import Optional, Union

import numpy as np

from .base_source import SampleSource, UnsupportedFormatError

logger = logging.getLogger(__name__)


class WavFileSource(SampleSource):
    """
    Mono PCM WAV file read frame by frame.

    Supports 8-bit unsigned and 16/24/32-bit signed PCM. Signed samples are
    scaled by the positive full scale ``2**(bits - 1) - 1`` so a 16-bit file
    maps to ``value / 32767``; 8-bit samples map to ``(byte - 128) / 128``,
    which keeps them inside [-1, 1). Anything else (more than one channel, a
    compressed or float format) raises `UnsupportedFormatError` when the file
    is opened, before any sample is produced.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        super().__init__()
        self._path = Path(path)
        if not self._path.exists():
            raise FileNotFoundError(f"File not found: {self._path}")
        try:
            wav = wave.open(str(self._path), "rb")
        except (wave.Error, EOFError) as exc:
            raise UnsupportedFormatError(f"Failed to open WAV file {self._path}: {exc}") from exc

        n_channels = wav.getnchannels()
        if n_channels != 1:
            wav.close()
            raise UnsupportedFormatError(
                f"{self._path.name} has {n_channels} channels; only mono recordings are supported"
            )
        sample_width = wav.getsampwidth()
        if sample_width not in (1, 2, 3, 4):
            wav.close()
            raise UnsupportedFormatError(f"Unsupported sample width: {sample_width * 8} bits")

        self._wav: Optional[wave.Wave_read] = wav
        self._sample_rate = wav.getframerate()
        self._sample_width = sample_width
        self._n_frames = wav.getnframes()
        # 8-bit is unsigned around 128; wider formats are symmetric signed
        self._full_scale = 128.0 if sample_width == 1 else float(2 ** (8 * sample_width - 1) - 1)

        logger.info(
            "Opened WAV file: %s (%d Hz, %d-bit, %d frames)",
            self._path.name,
            self._sample_rate,
            self._sample_width * 8,
            self._n_frames,
        )

    @property
    def path(self) -> Path:
        return self._path

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def total_frames(self) -> int:
        return self._n_frames

    @property
    def sample_width(self) -> int:
        """Bytes per sample."""
        return self._sample_width

    def _read_impl(self, n_frames: int) -> np.ndarray:
        if self._wav is None:
            return np.zeros(0, dtype=np.float64)
        raw_bytes = self._wav.readframes(n_frames)
        return self._decode_frames(raw_bytes)

    def _decode_frames(self, raw_bytes: bytes) -> np.ndarray:
        """Convert raw little-endian PCM bytes to float64 samples."""
        if not raw_bytes:
            return np.zeros(0, dtype=np.float64)
        width = self._sample_width
        usable = len(raw_bytes) - len(raw_bytes) % width
        raw_bytes = raw_bytes[:usable]
        if width == 1:  # 8-bit unsigned
            data = np.frombuffer(raw_bytes, dtype=np.uint8).astype(np.float64) - 128.0
        elif width == 2:
            data = np.frombuffer(raw_bytes, dtype="<i2").astype(np.float64)
        elif width == 3:
            raw_arr = np.frombuffer(raw_bytes, dtype=np.uint8).reshape(-1, 3).astype(np.int32)
            # Little-endian: byte 0 is LSB, byte 2 carries the sign
            val = raw_arr[:, 0] | (raw_arr[:, 1] << 8) | (raw_arr[:, 2] << 16)
            val = np.where(val & 0x800000, val - (1 << 24), val)
            data = val.astype(np.float64)
        else:
            data = np.frombuffer(raw_bytes, dtype="<i4").astype(np.float64)
        return data / self._full_scale

    def _close_impl(self) -> None:
        if self._wav is not None:
            self._wav.close()
            self._wav = None
            logger.debug("Closed WAV file %s after %d frames", self._path.name, self.frames_read)


__all__ = ["WavFileSource"]
