"""Band-limited upsampling with a truncated sinc kernel.

For a band-limited signal sampled at ``x[n]``, resampling at ``k`` times the
original rate is

    y[m] = sum_n x[n] * f[m - k n],    f[u] = sin(pi u / k) / (pi u / k)

The kernel is tabulated once for ``u in [0, k (n_kernel - 1)]`` and taken as
zero outside that support. Truncating the infinite cardinal series this way is
the accepted approximation: the segments handed in are short pulses whose
samples fall off to the baseline well inside the kernel window.
"""
from __future__ import annotations

from collections import OrderedDict
from typing import Dict

import numpy as np


class SincKernel:
    """Read-only lookup table of the cardinal sine at 1/k sample steps."""

    def __init__(self, k: int, n_kernel: int) -> None:
        k = int(k)
        n_kernel = int(n_kernel)
        if k < 1:
            raise ValueError("upsample factor k must be >= 1")
        if n_kernel < 1:
            raise ValueError("n_kernel must be >= 1")
        self._k = k
        self._n_kernel = n_kernel
        u = np.arange(k * (n_kernel - 1) + 1, dtype=np.float64)
        table = np.sinc(u / k)
        table[0] = 1.0
        table.setflags(write=False)
        self._table = table

    @property
    def k(self) -> int:
        return self._k

    @property
    def n_kernel(self) -> int:
        return self._n_kernel

    @property
    def support(self) -> int:
        """Largest |u| with a non-zero table entry."""
        return self._table.shape[0] - 1

    @property
    def table(self) -> np.ndarray:
        return self._table

    def __call__(self, u):
        """Evaluate the kernel at integer offset(s) `u`; zero outside the support."""
        u = np.abs(np.asarray(u, dtype=np.int64))
        inside = u <= self.support
        out = np.where(inside, self._table[np.minimum(u, self.support)], 0.0)
        if out.ndim == 0:
            return float(out)
        return out


class SincInterpolator:
    """
    Upsample short segments by an integer factor using a `SincKernel`.

    `upsample` is a matrix product ``(x - offset) @ W`` where ``W[n, m]`` is
    ``kernel(m - k n)``. The weight matrix only depends on the segment length,
    so it is built once per length and reused for every later segment of the
    same size. A new interpolator (and cache) is needed when `k` or the window
    half-size change.
    """

    def __init__(self, k: int, n_kernel: int, *, max_cached: int = 64) -> None:
        self._kernel = SincKernel(k, n_kernel)
        self._max_cached = max(1, int(max_cached))
        self._weights: "OrderedDict[int, np.ndarray]" = OrderedDict()

    @property
    def kernel(self) -> SincKernel:
        return self._kernel

    @property
    def k(self) -> int:
        return self._kernel.k

    def output_length(self, num_src: int) -> int:
        return self._kernel.k * (int(num_src) - 1) + 1

    def _weights_for(self, num_src: int) -> np.ndarray:
        weights = self._weights.get(num_src)
        if weights is not None:
            self._weights.move_to_end(num_src)
            return weights
        k = self._kernel.k
        n = np.arange(num_src, dtype=np.int64)[:, None]
        m = np.arange(self.output_length(num_src), dtype=np.int64)[None, :]
        weights = np.ascontiguousarray(self._kernel(m - k * n), dtype=np.float64)
        weights.setflags(write=False)
        self._weights[num_src] = weights
        if len(self._weights) > self._max_cached:
            self._weights.popitem(last=False)
        return weights

    def upsample(self, segment: np.ndarray, offset: float = 0.0) -> np.ndarray:
        """Return ``k (len(segment) - 1) + 1`` reconstructed samples.

        Args:
            segment: 1D array of raw samples.
            offset: Value subtracted from every sample before reconstruction.

        Raises:
            ValueError: If `segment` is not 1D or is empty.
        """
        src = np.asarray(segment, dtype=np.float64)
        if src.ndim != 1:
            raise ValueError("segment must be 1D")
        if src.size == 0:
            raise ValueError("segment must not be empty")
        if offset:
            src = src - float(offset)
        return src @ self._weights_for(int(src.size))

    def cache_info(self) -> Dict[str, int]:
        return {"entries": len(self._weights), "max_entries": self._max_cached}


__all__ = ["SincInterpolator", "SincKernel"]
