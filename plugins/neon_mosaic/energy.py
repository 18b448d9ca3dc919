"""
Energy Mask Compositor

Samples the turbulence field and a thickened outline mask to produce the
time-varying "glowing strand" alpha mask, then layers it onto the static
final frame with a pulsing bloom stack:

  outer bloom (magenta) -> mid bloom (warm) -> inner glow (cyan)
  -> hot white core -> crisp pass

Everything per-frame runs at a working resolution capped on the long edge,
independent of the plan size, and is upscaled once at the end.
"""

import logging
import math
from dataclasses import dataclass, replace

import numpy as np
from PIL import Image

from .buffers import PixelBuffer
from .masks import gaussian_blur
from .turbulence import FieldSampler, NoiseState, TurbulenceParams, noise_resolution, synthesize

logger = logging.getLogger(__name__)

ENERGY_MAX_DIM = 520

# (filter blur px, shadow rgb, shadow alpha, shadow blur px, pass alpha)
_BLOOM_STACK = (
    (34.0, (255, 120, 200), 0.70, 52.0, 0.55),
    (18.0, (255, 210, 120), 0.70, 34.0, 0.70),
    (7.0, (34, 211, 238), 0.85, 18.0, 0.95),
)


@dataclass(frozen=True)
class EnergyParams:
    amp: float = 3.9         # displacement strength, px in energy space
    gain: float = 1.18       # overall intensity
    cut: float = 0.15        # keeps it stringy
    sharp_pow: float = 1.95
    wave_amp: float = 0.55
    wave_freq: float = 14.0
    wave_speed: float = 3.0

    def scaled(self, scale):
        """Copy with amplitude scaled to a working/full resolution ratio."""
        return replace(self, amp=self.amp * scale)


def working_size(width, height, max_dim=ENERGY_MAX_DIM):
    """Working resolution (w, h, scale) with the long edge capped at max_dim."""
    long_edge = max(1, int(width), int(height))
    scale = min(1.0, max_dim / long_edge)
    return (max(1, int(round(width * scale))),
            max(1, int(round(height * scale))),
            scale)


class EnergyBuffer:
    """RGBA working-resolution buffer holding the white-core energy mask."""

    def __init__(self, width, height):
        self.buffer = PixelBuffer(width, height, 4)

    @property
    def width(self):
        return self.buffer.width

    @property
    def height(self):
        return self.buffer.height

    @property
    def data(self):
        return self.buffer.data

    @property
    def alpha(self):
        return self.buffer.data[:, :, 3]

    @classmethod
    def ensure(cls, current, width, height):
        if current is not None and current.buffer.matches(width, height, 4):
            return current
        logger.debug("Allocating %dx%d energy buffer", width, height)
        return cls(width, height)


def field_sampler(energy, res, current=None):
    """FieldSampler for the energy buffer's pixel grid, reusing `current` when it fits."""
    w, h = energy.width, energy.height
    if current is not None and current.matches(res, (h, w)):
        return current
    u = np.arange(w, dtype=np.float64)[np.newaxis, :] / max(1, w - 1)
    v = np.arange(h, dtype=np.float64)[:, np.newaxis] / max(1, h - 1)
    return FieldSampler(res, u, v)


def compose(energy, outline, state, t_seconds, params=None, sampler=None):
    """Rewrite `energy` with the strand mask for time `t_seconds`.

    Args:
        energy: EnergyBuffer at working resolution (mutated)
        outline: AlphaMask at full plan resolution (already thickened)
        state: NoiseState synthesized for this frame
        t_seconds: Elapsed animation time
        params: EnergyParams (amp already scaled to working resolution)
        sampler: Cached FieldSampler for this grid; built on the fly if None
    """
    p = params or EnergyParams()
    w, h = energy.width, energy.height
    out_h, out_w = outline.alpha.shape

    xs = np.arange(w, dtype=np.float64)[np.newaxis, :]
    ys = np.arange(h, dtype=np.float64)[:, np.newaxis]
    v = ys / max(1, h - 1)

    sampler = field_sampler(energy, state.res, sampler)
    dx, dy, spark, fil = sampler.sample(state.data)

    # Displace the sampling point; the wave makes the stroke crawl
    wave = np.sin(v * p.wave_freq + t_seconds * p.wave_speed) * p.wave_amp
    sx = xs + dx * p.amp + wave
    sy = ys + dy * p.amp

    ox = np.clip(sx * (out_w / w), 0, out_w - 1).astype(np.intp)
    oy = np.clip(sy * (out_h / h), 0, out_h - 1).astype(np.intp)
    oa = outline.alpha[oy, ox]
    inside = oa > 0

    base = oa.astype(np.float64) / 255.0
    strand = np.power(np.clip((fil - p.cut) * 1.35, 0.0, 1.0), p.sharp_pow)
    sparkle = np.power(spark, 1.25)

    crawl = 0.45 + 0.35 * math.sin(t_seconds * 2.8)
    hf = 0.82 + 0.18 * np.sin(t_seconds * 13.0 + (xs + ys) * 0.015 + crawl)

    intensity = np.clip(strand * 0.95 + sparkle * 0.8, 0.0, 1.0)
    a = np.clip(base * (0.14 + intensity) * p.gain * hf, 0.0, 1.0)

    data = energy.data
    data[:, :, :3] = np.where(inside, 255, 0)[:, :, np.newaxis]
    data[:, :, 3] = np.where(inside, a * 255.0, 0.0).astype(np.uint8)
    return energy


def resample_layer(layer, width, height, offset=(0.0, 0.0)):
    """Bilinear resample of an (h, w, C) float layer to (height, width).

    `offset` shifts the content by (dx, dy) source pixels in the same pass.
    """
    h, w = layer.shape[:2]
    jx, jy = offset
    coeffs = (w / width, 0.0, -jx, 0.0, h / height, -jy)
    out = np.empty((height, width, layer.shape[2]), dtype=np.float32)
    for c in range(layer.shape[2]):
        img = Image.fromarray(np.ascontiguousarray(layer[:, :, c], dtype=np.float32))
        out[:, :, c] = np.asarray(img.transform(
            (width, height), Image.Transform.AFFINE, coeffs,
            resample=Image.Resampling.BILINEAR,
        ))
    return out


def glow_stack(energy, t_seconds, scale=1.0):
    """Additive glow layer (premultiplied, working resolution) for one frame.

    Returns (layer, jitter) where jitter is the sub-pixel (dx, dy) offset to
    apply when the layer is resampled onto the frame.
    """
    a = energy.alpha.astype(np.float32) / 255.0
    h, w = a.shape
    pulse = 0.74 + 0.26 * math.sin(t_seconds * 2.1)
    layer = np.zeros((h, w, 4), dtype=np.float32)

    for blur, shadow_rgb, shadow_alpha, shadow_blur, alpha in _BLOOM_STACK:
        k = np.float32(alpha * pulse)
        core = gaussian_blur(a, blur * scale)
        halo = gaussian_blur(a, (blur + shadow_blur / 2.0) * scale) * np.float32(shadow_alpha)
        for c in range(3):
            layer[:, :, c] += k * (core + halo * (shadow_rgb[c] / 255.0))
        layer[:, :, 3] += k * np.maximum(core, halo)

    # Hot core and crisp pass are the raw white mask
    layer += (1.0 + 0.9) * a[:, :, np.newaxis]
    np.clip(layer, 0.0, 1.0, out=layer)

    jx = math.sin(t_seconds * 4.2) * 0.35 * scale
    jy = math.cos(t_seconds * 3.6) * 0.35 * scale
    return layer, (jx, jy)


def render_energy_frame(base, energy, t_seconds, scale=1.0):
    """Layer the animated energy onto a copy of the final frame buffer."""
    layer, jitter = glow_stack(energy, t_seconds, scale)
    # upscale and jitter in one bilinear pass
    layer = resample_layer(layer, base.width, base.height, jitter)
    return base.copy().add(layer)


class EnergyRenderer:
    """Owns the per-frame buffers of the energy phase.

    NoiseState and EnergyBuffer are reused across frames and only
    reallocated when the working-resolution fingerprint changes.
    """

    def __init__(self, max_dim=ENERGY_MAX_DIM, noise_min_res=220, noise_max_res=380,
                 turbulence=None, energy=None):
        self.max_dim = max_dim
        self.noise_min_res = noise_min_res
        self.noise_max_res = noise_max_res
        self.turbulence = turbulence or TurbulenceParams()
        self.energy_params = energy or EnergyParams()
        self.noise_state = None
        self.energy_buffer = None
        self.sampler = None
        self.outline = None
        self.scale = 1.0

    def prepare(self, width, height, outline):
        """Size the working buffers for a plan and bind its outline mask."""
        ew, eh, self.scale = working_size(width, height, self.max_dim)
        self.energy_buffer = EnergyBuffer.ensure(self.energy_buffer, ew, eh)
        res = noise_resolution(ew, eh, self.noise_min_res, self.noise_max_res)
        self.noise_state = NoiseState.ensure(self.noise_state, res)
        self.sampler = field_sampler(self.energy_buffer, res, self.sampler)
        self.outline = outline
        return self

    @property
    def ready(self):
        return self.outline is not None and self.energy_buffer is not None

    def render(self, base, t_seconds):
        """Synthesize, compose and layer one energy frame onto `base`."""
        synthesize(self.noise_state, t_seconds, self.turbulence)
        compose(self.energy_buffer, self.outline, self.noise_state, t_seconds,
                self.energy_params.scaled(self.scale), self.sampler)
        return render_energy_frame(base, self.energy_buffer, t_seconds, self.scale)
