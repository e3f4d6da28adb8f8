"""Seeded random streams, one per simulated scenario."""

from __future__ import annotations

import math
from typing import Optional

import numpy as np
from numba import njit


MASK64 = 0xFFFFFFFFFFFFFFFF
# xorshift state must never be zero
ZERO_SEED_REPLACEMENT = 0xA5A5A5A5A5A5A5A5

_GOLDEN_GAMMA = np.uint64(0x9E3779B97F4A7C15)
_MIX1 = np.uint64(0xBF58476D1CE4E5B9)
_MIX2 = np.uint64(0x94D049BB133111EB)
_XORSHIFT_MULT = np.uint64(0x2545F4914F6CDD1D)
_ZERO_SEED = np.uint64(ZERO_SEED_REPLACEMENT)
_UNIFORM_DENOM = float(1 << 53)


@njit(cache=True)
def _splitmix64_jit(x):
    # uint64 arithmetic wraps; shift counts stay uint64 so nothing widens to float
    x = x + _GOLDEN_GAMMA
    z = (x ^ (x >> np.uint64(30))) * _MIX1
    z = (z ^ (z >> np.uint64(27))) * _MIX2
    return z ^ (z >> np.uint64(31))


@njit(cache=True)
def _derive_seed_jit(base_seed, age, scenario_id):
    mixed = base_seed ^ (np.uint64(age) << np.uint64(32)) ^ np.uint64(scenario_id)
    return _splitmix64_jit(mixed)


@njit(cache=True)
def _seed_state_jit(seed):
    if seed == np.uint64(0):
        return _ZERO_SEED
    return seed


@njit(cache=True)
def _next_u64_jit(state):
    x = state[0]
    x ^= x >> np.uint64(12)
    x ^= x << np.uint64(25)
    x ^= x >> np.uint64(27)
    state[0] = x
    return x * _XORSHIFT_MULT


@njit(cache=True)
def _next_uniform_jit(state):
    return (np.float64(_next_u64_jit(state) >> np.uint64(11)) + 0.5) / _UNIFORM_DENOM


@njit(cache=True)
def _box_muller_jit(state):
    u1 = max(_next_uniform_jit(state), 1e-12)
    u2 = _next_uniform_jit(state)
    r = math.sqrt(-2.0 * math.log(u1))
    theta = 2.0 * math.pi * u2
    return r * math.cos(theta), r * math.sin(theta)


@njit(cache=True)
def _fill_standard_normals_jit(state, out):
    """Fill ``out`` pairwise; an odd length drops the last pair's second draw."""
    n = out.shape[0]
    i = 0
    while i < n:
        z0, z1 = _box_muller_jit(state)
        out[i] = z0
        if i + 1 < n:
            out[i + 1] = z1
        i += 2


@njit(cache=True)
def _fill_scenario_normals_jit(base_seed, age, scenario_id, out):
    """Every normal one scenario consumes, drawn from its derived seed."""
    state = np.empty(1, dtype=np.uint64)
    state[0] = _seed_state_jit(_derive_seed_jit(base_seed, age, scenario_id))
    _fill_standard_normals_jit(state, out)


def as_seed(value: int) -> np.uint64:
    return np.uint64(int(value) & MASK64)


def splitmix64(x: int) -> int:
    """Avalanche a 64-bit integer."""
    return int(_splitmix64_jit(as_seed(x)))


def derive_seed(base_seed: int, age: int, scenario_id: int) -> int:
    """Seed for one scenario of one candidate age.

    Pure function of its arguments, so scenarios can be generated in any
    order (or in parallel) and still reproduce exactly.
    """
    return int(_derive_seed_jit(as_seed(base_seed), age, scenario_id))


class RandomStream:
    """xorshift64* generator with Box-Muller normals."""

    def __init__(self, seed: int):
        self._state = np.empty(1, dtype=np.uint64)
        self._state[0] = _seed_state_jit(as_seed(seed))
        self._cached_normal: Optional[float] = None

    @property
    def state(self) -> int:
        return int(self._state[0])

    def next_u64(self) -> int:
        return int(_next_u64_jit(self._state))

    def next_uniform(self) -> float:
        """Uniform double in the open interval (0, 1) built from 53 bits."""
        return float(_next_uniform_jit(self._state))

    def standard_normal(self) -> float:
        if self._cached_normal is not None:
            z = self._cached_normal
            self._cached_normal = None
            return z

        z0, z1 = _box_muller_jit(self._state)
        self._cached_normal = float(z1)
        return float(z0)

    def standard_normals(self, n: int) -> np.ndarray:
        """The next ``n`` values :meth:`standard_normal` would return."""
        out = np.empty(n, dtype=np.float64)
        start = 0
        if n and self._cached_normal is not None:
            out[0] = self.standard_normal()
            start = 1
        paired = (n - start) // 2 * 2
        _fill_standard_normals_jit(self._state, out[start:start + paired])
        if start + paired < n:
            out[n - 1] = self.standard_normal()
        return out
