"""
Pixel Buffers for the Mosaic Renderer

Two buffer types carry pixels between the stages:

  - PixelBuffer: owned uint8 (H, W, C) storage reused across frames and keyed
    by a (width, height, channels) fingerprint. NoiseState and EnergyBuffer
    are built on it.
  - FrameBuffer: premultiplied float32 RGBA at plan resolution. All layer
    compositing (source-over, additive "lighter") happens here.

Also holds the packing scheme for the turbulence field so it can be tested
without rendering anything.
"""

import numpy as np
from PIL import Image


class PixelBuffer:
    """Fixed-size uint8 pixel storage, reallocated only on fingerprint change."""

    def __init__(self, width, height, channels=4):
        if width <= 0 or height <= 0 or channels <= 0:
            raise ValueError(
                f"PixelBuffer needs positive dimensions, got {width}x{height}x{channels}"
            )
        self.width = int(width)
        self.height = int(height)
        self.channels = int(channels)
        self.data = np.zeros((self.height, self.width, self.channels), dtype=np.uint8)

    @property
    def fingerprint(self):
        return (self.width, self.height, self.channels)

    def matches(self, width, height, channels=4):
        return self.fingerprint == (int(width), int(height), int(channels))

    @classmethod
    def ensure(cls, current, width, height, channels=4):
        """Return `current` if it already has this shape, else a fresh buffer."""
        if current is not None and current.matches(width, height, channels):
            return current
        return cls(width, height, channels)


class FrameBuffer:
    """Premultiplied float32 RGBA image in [0, 1].

    Canvas-style compositing: `over` is source-over with a global alpha,
    `add` is the additive "lighter" operator (per-channel sum, clamped).
    """

    def __init__(self, width, height):
        self.width = int(width)
        self.height = int(height)
        self.rgba = np.zeros((self.height, self.width, 4), dtype=np.float32)

    @classmethod
    def from_array(cls, rgba):
        """Wrap an existing premultiplied (H, W, 4) float array (no copy)."""
        h, w = rgba.shape[:2]
        fb = cls.__new__(cls)
        fb.width = w
        fb.height = h
        fb.rgba = rgba.astype(np.float32, copy=False)
        return fb

    @classmethod
    def from_rgba8(cls, rgba8):
        """Build from straight-alpha uint8 RGBA."""
        arr = rgba8.astype(np.float32) / 255.0
        arr[:, :, :3] *= arr[:, :, 3:4]
        return cls.from_array(arr)

    @property
    def size(self):
        return (self.width, self.height)

    @property
    def alpha(self):
        return self.rgba[:, :, 3]

    def copy(self):
        return FrameBuffer.from_array(self.rgba.copy())

    def over(self, src, opacity=1.0):
        """Source-over composite of a premultiplied (H, W, 4) array."""
        if opacity <= 0:
            return self
        s = src if opacity >= 1.0 else src * np.float32(opacity)
        self.rgba *= (1.0 - s[:, :, 3:4])
        self.rgba += s
        return self

    def add(self, src, opacity=1.0):
        """Additive ("lighter") composite, clamped to [0, 1]."""
        if opacity <= 0:
            return self
        self.rgba += src * np.float32(opacity)
        np.clip(self.rgba, 0.0, 1.0, out=self.rgba)
        return self

    def to_rgba8(self):
        """Straight-alpha uint8 RGBA copy of the buffer."""
        a = self.rgba[:, :, 3:4]
        rgb = np.divide(self.rgba[:, :, :3], a, out=np.zeros_like(self.rgba[:, :, :3]),
                        where=a > 1e-6)
        out = np.empty((self.height, self.width, 4), dtype=np.uint8)
        out[:, :, :3] = np.clip(rgb * 255.0 + 0.5, 0, 255)
        out[:, :, 3] = np.clip(a[:, :, 0] * 255.0 + 0.5, 0, 255)
        return out

    def to_image(self):
        return Image.fromarray(self.to_rgba8(), "RGBA")

    def resized(self, width, height):
        """Bilinear resample to (width, height); returns a new FrameBuffer."""
        width, height = max(1, int(width)), max(1, int(height))
        if (width, height) == self.size:
            return self.copy()
        img = self.to_image().resize((width, height), Image.BILINEAR)
        return FrameBuffer.from_rgba8(np.asarray(img))


def solid_layer(shape_hw, rgb, alpha_map):
    """Premultiplied RGBA layer of one colour with per-pixel alpha (float 0-1)."""
    h, w = shape_hw
    layer = np.empty((h, w, 4), dtype=np.float32)
    a = alpha_map.astype(np.float32, copy=False)
    for c in range(3):
        layer[:, :, c] = a * (rgb[c] / 255.0)
    layer[:, :, 3] = a
    return layer


# ── Turbulence field packing ─────────────────────────────────────────────
# Channel 0/1: displacement x/y in [-1, 1] -> [0, 255]
# Channel 2:   spark intensity [0, 1] -> [0, 255]
# Channel 3:   filament intensity [0, 1] -> [0, 255]

def encode_field(dx, dy, spark, filament, out=None):
    """Pack field components into uint8 (..., 4). Values are clamped then truncated."""
    dx = np.asarray(dx, dtype=np.float64)
    if out is None:
        out = np.empty(dx.shape + (4,), dtype=np.uint8)
    out[..., 0] = np.clip((dx * 0.5 + 0.5) * 255.0, 0, 255)
    out[..., 1] = np.clip((np.asarray(dy) * 0.5 + 0.5) * 255.0, 0, 255)
    out[..., 2] = np.clip(np.asarray(spark) * 255.0, 0, 255)
    out[..., 3] = np.clip(np.asarray(filament) * 255.0, 0, 255)
    return out


def decode_field(packed):
    """Unpack a (..., 4) field into float (dx, dy, spark, filament)."""
    p = np.asarray(packed, dtype=np.float64) / 255.0
    return p[..., 0] * 2.0 - 1.0, p[..., 1] * 2.0 - 1.0, p[..., 2], p[..., 3]
