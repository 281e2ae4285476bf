"""
Seeded pseudo-random source for reproducible "realistic randomness".

Mulberry32 over a 32-bit state. Same seed + same call order = same draws.
"""

from __future__ import annotations

import math
import time

_MASK32 = 0xFFFFFFFF
_TWO_32 = 4294967296.0


def _imul(a: int, b: int) -> int:
    """32-bit wrapping multiply (unsigned result)."""
    return (a * b) & _MASK32


class SeededRandom:
    """Deterministic uniform and Gaussian draws."""

    def __init__(self, seed: int | None = None) -> None:
        self.set_seed(seed)

    @property
    def seed(self) -> int:
        return self._seed

    def set_seed(self, seed: int | None) -> None:
        """Fully reset internal state. None seeds from wall time (non-reproducible)."""
        if seed is None:
            seed = time.time_ns()
        self._seed = int(seed) & _MASK32
        self._state = self._seed

    def next_float(self) -> float:
        """Uniform sample in [0, 1)."""
        self._state = (self._state + 0x6D2B79F5) & _MASK32
        t = self._state
        t = _imul(t ^ (t >> 15), t | 1)
        t ^= (t + _imul(t ^ (t >> 7), t | 61)) & _MASK32
        return ((t ^ (t >> 14)) & _MASK32) / _TWO_32

    def next_gaussian(self) -> float:
        """Standard normal sample (Box-Muller, two uniform draws)."""
        u1 = 1.0 - self.next_float()  # (0, 1], keeps log finite
        u2 = self.next_float()
        return math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)

    def uniform(self, low: float, high: float) -> float:
        return low + (high - low) * self.next_float()
