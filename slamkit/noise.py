"""Deterministic pseudo-random noise matching the C library ``rand`` sequence."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

RAND_MAX = 2147483647

_DEGREE = 31
_SEPARATION = 3
_MASK = 0xFFFFFFFF


def _c_div(a: int, b: int) -> int:
    """Integer division truncating toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


class NoiseSource:
    """Additive-feedback generator seeded like ``srand``, with Gaussian helpers."""

    def __init__(self, seed: int = 1) -> None:
        seed &= _MASK
        if seed == 0:
            seed = 1
        word = seed - (1 << 32) if seed >= (1 << 31) else seed
        state = [word & _MASK]
        for _ in range(1, _DEGREE):
            hi = _c_div(word, 127773)
            lo = word - hi * 127773
            word = 16807 * lo - 2836 * hi
            if word < 0:
                word += 2147483647
            state.append(word & _MASK)
        self._state = state
        self._front = _SEPARATION
        self._rear = 0
        for _ in range(_DEGREE * 10):
            self._next()

    def _next(self) -> int:
        value = (self._state[self._front] + self._state[self._rear]) & _MASK
        self._state[self._front] = value
        self._front = (self._front + 1) % _DEGREE
        self._rear = (self._rear + 1) % _DEGREE
        return value >> 1

    def rand_double(self) -> float:
        """Uniform value in ``[0, 1]``."""
        return self._next() / RAND_MAX

    def rand_normal(self) -> float:
        """Standard normal value from the Marsaglia polar method."""
        while True:
            x1 = 2.0 * self.rand_double() - 1.0
            x2 = 2.0 * self.rand_double() - 1.0
            w = x1 * x1 + x2 * x2
            if 0.0 < w < 1.0:
                break
        return x1 * math.sqrt((-2.0 * math.log(w)) / w)

    def perturb_point3(self, sigma: float, point: Sequence[float]) -> np.ndarray:
        """Return a copy of a 3-vector with Gaussian noise of ``sigma`` added."""
        base = np.asarray(point, dtype=float)
        if base.shape != (3,):
            raise ValueError(f"point must have 3 elements, got shape {base.shape}")
        return base + np.array([self.rand_normal() * sigma for _ in range(3)])