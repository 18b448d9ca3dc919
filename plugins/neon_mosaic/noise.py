"""
Deterministic Noise Primitives

Integer-mix hash, bilinear value noise and fractal Brownian motion. Every
function is a pure function of its inputs: no state, no RNG, identical output
on every run and platform. All of them accept scalars or numpy arrays
(broadcast together); scalar inputs return a Python float.

Integer maths is done in int64 with explicit 32-bit masking, so negative and
very large coordinates hash without overflow warnings.
"""

import numpy as np

_MASK32 = 0xFFFFFFFF
_PRIME_X = 374761393
_PRIME_Y = 668265263
_MIX = 1274126177

# Odd stride between octave seeds (decorrelates octaves)
OCTAVE_SEED_STRIDE = 1013

DEFAULT_SEED = 1337


def _is_scalar(*values):
    return all(np.ndim(v) == 0 for v in values)


def _as_result(arr, scalar):
    return float(arr) if scalar else arr


def _hash_lattice(xi, yi, seed):
    """32-bit hash of integer lattice coords (int64 arrays) -> [0, 1)."""
    x = (xi & _MASK32) * _PRIME_X & _MASK32
    y = (yi & _MASK32) * _PRIME_Y & _MASK32
    n = x ^ y ^ (np.int64(seed) & _MASK32)
    n = (n ^ (n >> 13)) * _MIX & _MASK32
    n = n ^ (n >> 16)
    return n.astype(np.float64) / 4294967296.0


def hash2(x, y, seed=DEFAULT_SEED):
    """Deterministic hash of integer coordinates in [0, 1).

    Non-integer inputs are floored first.
    """
    scalar = _is_scalar(x, y)
    xi = np.floor(np.asarray(x, dtype=np.float64)).astype(np.int64)
    yi = np.floor(np.asarray(y, dtype=np.float64)).astype(np.int64)
    return _as_result(_hash_lattice(xi, yi, seed), scalar)


def smoothstep(t):
    return t * t * (3.0 - 2.0 * t)


def value_noise(x, y, seed=DEFAULT_SEED):
    """Bilinear value noise in [0, 1] with smoothstep easing.

    At integer lattice points the result equals `hash2` exactly.
    """
    scalar = _is_scalar(x, y)
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    x0 = np.floor(x)
    y0 = np.floor(y)
    u = smoothstep(x - x0)
    v = smoothstep(y - y0)
    xi = x0.astype(np.int64)
    yi = y0.astype(np.int64)

    a = _hash_lattice(xi, yi, seed)
    b = _hash_lattice(xi + 1, yi, seed)
    c = _hash_lattice(xi, yi + 1, seed)
    d = _hash_lattice(xi + 1, yi + 1, seed)

    ab = a + (b - a) * u
    cd = c + (d - c) * u
    return _as_result(ab + (cd - ab) * v, scalar)


def fbm(x, y, octaves=4, seed=DEFAULT_SEED):
    """Fractal Brownian motion over value noise, normalised to [0, 1].

    Octave i samples at frequency 2**i with amplitude 0.5**(i+1) and seed
    seed + i * OCTAVE_SEED_STRIDE.
    """
    scalar = _is_scalar(x, y)
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    total = np.zeros(np.broadcast(x, y).shape, dtype=np.float64)
    amp = 0.5
    freq = 1.0
    norm = 0.0
    for i in range(int(octaves)):
        total += amp * value_noise(x * freq, y * freq, seed + i * OCTAVE_SEED_STRIDE)
        norm += amp
        amp *= 0.5
        freq *= 2.0
    if norm > 0:
        total /= norm
    return _as_result(total, scalar)
