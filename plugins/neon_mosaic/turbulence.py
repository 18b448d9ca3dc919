"""
Turbulence Field Synthesizer

Builds the moving vector + intensity field that drives the energy outline.
Per pixel of a square NoiseState:

  - a low-frequency displacement vector from two decorrelated fbm samples,
    rotated by a "curl" angle so the flow arcs instead of drifting
  - a high-frequency ridged filament intensity (thin bright strands)
  - a rare spark highlight riding the top of the same sample

The field depends only on elapsed time, never on the previous frame, so any
frame can be synthesized on its own.
"""

import logging
import math
from dataclasses import dataclass

import numpy as np

from .buffers import PixelBuffer, encode_field, decode_field
from .noise import fbm

logger = logging.getLogger(__name__)

NOISE_MIN_RES = 220
NOISE_MAX_RES = 380


@dataclass(frozen=True)
class TurbulenceParams:
    seed: int = 7331
    disp_scale: float = 2.05    # low-frequency warp
    fil_scale: float = 7.9      # high-frequency strands
    oct_disp: int = 3
    oct_fil: int = 4
    flow_x: float = 0.28
    flow_y: float = 0.22
    curl: float = 1.65
    curl_gain: float = 1.15
    ridge_pow: float = 3.25
    spark_threshold: float = 0.62
    spark_pow: float = 2.1


def noise_resolution(energy_w, energy_h, min_res=NOISE_MIN_RES, max_res=NOISE_MAX_RES):
    """Side of the NoiseState for a given working-resolution buffer."""
    min_dim = max(1, min(int(energy_w), int(energy_h)))
    return max(min_res, min(max_res, int(round(min_dim * 0.75))))


class NoiseState:
    """Square packed field buffer plus its cached normalized grid."""

    def __init__(self, res):
        self.res = int(res)
        self.buffer = PixelBuffer(self.res, self.res, 4)
        coords = np.arange(self.res, dtype=np.float64) / self.res
        self._u = coords[np.newaxis, :]
        self._v = coords[:, np.newaxis]
        self.t = None

    @property
    def data(self):
        return self.buffer.data

    @classmethod
    def ensure(cls, current, res):
        """Reuse `current` when its resolution matches, else allocate."""
        if current is not None and current.res == int(res):
            return current
        logger.debug("Allocating %dx%d noise state", res, res)
        return cls(res)

    def decode(self):
        """Float (dx, dy, spark, filament) view of the current field."""
        return decode_field(self.buffer.data)


def synthesize(state, t_seconds, params=None):
    """Rewrite `state` in place with the field for time `t_seconds`."""
    p = params or TurbulenceParams()
    u, v = state._u, state._v

    flow_x = t_seconds * p.flow_x
    flow_y = t_seconds * p.flow_y
    flick = 0.9 + 0.1 * math.sin(t_seconds * 3.2)

    # Displacement vector (two related fbms, spatially offset)
    nx = fbm(u * p.disp_scale + flow_x, v * p.disp_scale + flow_y, p.oct_disp, p.seed)
    ny = fbm(u * p.disp_scale + 37 + flow_x * 0.92,
             v * p.disp_scale + 91 + flow_y * 1.08,
             p.oct_disp, p.seed + 19)
    dx = (nx - 0.5) * 2.0
    dy = (ny - 0.5) * 2.0

    # Curl: rotate so the flow circulates locally
    ang = (nx + ny - 1.0) * p.curl
    ca = np.cos(ang)
    sa = np.sin(ang)
    cdx = (dx * ca - dy * sa) * p.curl_gain
    cdy = (dx * sa + dy * ca) * p.curl_gain

    # Filaments (ridged)
    n = fbm(u * p.fil_scale + flow_x * 2.1, v * p.fil_scale - flow_y * 2.4,
            p.oct_fil, p.seed + 77)
    ridged = 1.0 - np.abs(2.0 * n - 1.0)
    fil = np.power(ridged, p.ridge_pow)

    spark = np.power(np.clip((n - p.spark_threshold) * 3.4, 0.0, 1.0), p.spark_pow)
    fil = np.clip((fil * 0.85 + spark * 0.55) * flick, 0.0, 1.0)

    encode_field(cdx, cdy, spark, fil, out=state.buffer.data)
    state.t = t_seconds
    return state


class FieldSampler:
    """Bilinear taps for sampling a (res, res, 4) field on a fixed (u, v) grid.

    Indices and weights depend only on the grid and `res`, so they are built
    once and reused every frame.
    """

    def __init__(self, res, u, v):
        self.res = int(res)
        x = np.clip(np.asarray(u, dtype=np.float64), 0.0, 1.0) * (self.res - 1)
        y = np.clip(np.asarray(v, dtype=np.float64), 0.0, 1.0) * (self.res - 1)
        x, y = np.broadcast_arrays(x, y)
        self.shape = x.shape

        self.x0 = np.floor(x).astype(np.intp)
        self.y0 = np.floor(y).astype(np.intp)
        self.x1 = np.minimum(self.res - 1, self.x0 + 1)
        self.y1 = np.minimum(self.res - 1, self.y0 + 1)
        tx = (x - self.x0).astype(np.float32)[..., np.newaxis]
        ty = (y - self.y0).astype(np.float32)[..., np.newaxis]
        # 1/255 folded into the weights
        k = np.float32(1.0 / 255.0)
        self.w00 = (1 - tx) * (1 - ty) * k
        self.w10 = tx * (1 - ty) * k
        self.w01 = (1 - tx) * ty * k
        self.w11 = tx * ty * k

    def matches(self, res, shape):
        return self.res == int(res) and self.shape == tuple(shape)

    def sample(self, packed):
        """Float (dx, dy, spark, filament) at every grid point."""
        f = packed.astype(np.float32)
        val = (f[self.y0, self.x0] * self.w00
               + f[self.y0, self.x1] * self.w10
               + f[self.y1, self.x0] * self.w01
               + f[self.y1, self.x1] * self.w11)
        return val[..., 0] * 2 - 1, val[..., 1] * 2 - 1, val[..., 2], val[..., 3]


def sample_field(packed, u, v):
    """Bilinear sample of a packed (res, res, 4) field at normalized (u, v).

    `u`, `v` broadcast together; returns float (dx, dy, spark, filament).
    """
    return FieldSampler(packed.shape[0], u, v).sample(packed)
