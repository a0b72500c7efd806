"""CSV export of pulse-height histograms.

The format is the one the original command-line tool wrote, so existing
spreadsheets and scripts keep working::

    Channel;Counts
    0;12
    1;7
    ...
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Union

import numpy as np

logger = logging.getLogger(__name__)

HEADER = "Channel;Counts"


def write_histogram_csv(path: Union[str, Path], counts: np.ndarray) -> Path:
    """Write one ``index;count`` line per bin, ascending, after the header."""
    arr = np.asarray(counts)
    if arr.ndim != 1:
        raise ValueError("counts must be 1D")
    if arr.size and (not np.issubdtype(arr.dtype, np.integer) and not np.all(arr == np.floor(arr))):
        raise ValueError("counts must be whole numbers")
    path = Path(path)
    out_dir = path.parent
    if str(out_dir):
        os.makedirs(out_dir, exist_ok=True)
    lines = [HEADER]
    lines.extend(f"{i};{int(c)}" for i, c in enumerate(arr))
    try:
        with open(path, "w", encoding="ascii", newline="\n") as fh:
            fh.write("\n".join(lines))
            fh.write("\n")
    except OSError as exc:
        logger.error("Failed to write histogram to %s: %s", path, exc)
        raise
    logger.info("Wrote %d-bin histogram (%d counts) to %s", arr.size, int(arr.sum()), path)
    return path


def read_histogram_csv(path: Union[str, Path]) -> np.ndarray:
    """Parse a file written by `write_histogram_csv` back into counts."""
    path = Path(path)
    with open(path, "r", encoding="ascii") as fh:
        header = fh.readline().strip()
        if header != HEADER:
            raise ValueError(f"{path}: expected header {HEADER!r}, got {header!r}")
        counts = []
        for lineno, line in enumerate(fh, start=2):
            line = line.strip()
            if not line:
                continue
            try:
                index_text, count_text = line.split(";")
                index, count = int(index_text), int(count_text)
            except ValueError as exc:
                raise ValueError(f"{path}:{lineno}: malformed line {line!r}") from exc
            if index != len(counts):
                raise ValueError(f"{path}:{lineno}: expected bin {len(counts)}, got {index}")
            counts.append(count)
    return np.asarray(counts, dtype=np.uint64)


__all__ = ["HEADER", "read_histogram_csv", "write_histogram_csv"]
