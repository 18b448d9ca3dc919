"""
Mask Pipeline

Turns white-on-black shape images into single-channel alpha stencils at plan
resolution, and provides the stencil operations the compositor needs:
dilation, subtraction (destination-out), clipping (destination-in) and solid
fills through a mask, with an optional canvas-style blurred "shadow" glow.

A missing or undecodable source never raises here: it becomes an all-zero
mask, which every consumer treats as "feature absent".
"""

import io
import logging
import os

import numpy as np
from PIL import Image, UnidentifiedImageError
from scipy.ndimage import gaussian_filter as _scipy_gaussian

from .buffers import solid_layer

logger = logging.getLogger(__name__)

# ITU-R BT.709 luma weights, scaled by 10^4
_LUMA = (2126, 7152, 722)


class AlphaMask:
    """Single-channel opacity stencil (uint8, 0-255)."""

    __slots__ = ("alpha",)

    def __init__(self, alpha):
        self.alpha = np.ascontiguousarray(alpha, dtype=np.uint8)

    @classmethod
    def empty(cls, width, height):
        return cls(np.zeros((int(height), int(width)), dtype=np.uint8))

    @property
    def width(self):
        return self.alpha.shape[1]

    @property
    def height(self):
        return self.alpha.shape[0]

    @property
    def size(self):
        return (self.width, self.height)

    @property
    def is_empty(self):
        return not self.alpha.any()

    def coverage(self):
        """Float opacity in [0, 1]."""
        return self.alpha.astype(np.float32) / 255.0

    def to_rgba(self):
        """RGBA uint8 with zeroed colour channels (pure stencil)."""
        out = np.zeros((self.height, self.width, 4), dtype=np.uint8)
        out[:, :, 3] = self.alpha
        return out

    def contains(self, x, y):
        """Nearest-pixel membership test, coordinates clamped to the mask."""
        xi = min(max(int(np.floor(x + 0.5)), 0), self.width - 1)
        yi = min(max(int(np.floor(y + 0.5)), 0), self.height - 1)
        return self.alpha[yi, xi] > 0

    def __repr__(self):
        return f"AlphaMask({self.width}x{self.height}, empty={self.is_empty})"


def load_image(source):
    """Decode an image from bytes, a path or a file object.

    Returns a loaded PIL image, or None (logged) when it cannot be read.
    """
    if source is None:
        return None
    try:
        if isinstance(source, (bytes, bytearray)):
            source = io.BytesIO(source)
        img = Image.open(source)
        img.load()
        return img
    except (OSError, UnidentifiedImageError, ValueError) as e:
        label = source if isinstance(source, (str, os.PathLike)) else type(source).__name__
        logger.warning("Shape image %s could not be decoded: %s", label, e)
        return None


def _flatten_on_black(img):
    if "A" in img.getbands() or img.mode == "P":
        rgba = img.convert("RGBA")
        bg = Image.new("RGBA", rgba.size, (0, 0, 0, 255))
        bg.alpha_composite(rgba)
        return bg.convert("RGB")
    return img.convert("RGB")


def to_alpha_mask(image, width, height, threshold=0):
    """Rasterize a grayscale shape image into an AlphaMask.

    Luminance at or below `threshold` becomes transparent; brighter pixels
    keep their luminance as alpha, so soft edges stay partially opaque.

    Args:
        image: PIL image, numpy array, or None (feature absent)
        width, height: Target (plan) resolution
        threshold: Integer luminance cutoff 0-255
    """
    if isinstance(threshold, bool) or int(threshold) != threshold or not 0 <= threshold <= 255:
        raise ValueError(f"threshold must be an integer in 0-255, got {threshold!r}")
    width, height = int(width), int(height)
    if image is None:
        return AlphaMask.empty(width, height)

    try:
        if isinstance(image, np.ndarray):
            image = Image.fromarray(image)
        rgb = _flatten_on_black(image).resize((width, height), Image.BILINEAR)
    except (OSError, ValueError, TypeError) as e:
        logger.warning("Shape image could not be rasterized (%s); using empty mask", e)
        return AlphaMask.empty(width, height)

    # integer weights so pure white lands exactly on 255
    px = np.asarray(rgb, dtype=np.int32)
    lum = (_LUMA[0] * px[:, :, 0] + _LUMA[1] * px[:, :, 1]
           + _LUMA[2] * px[:, :, 2]) // 10000
    alpha = np.where(lum <= threshold, 0, lum)
    return AlphaMask(np.clip(alpha, 0, 255))


def _shift(a, dx, dy):
    """Translate a 2D array by (dx, dy) with zero fill."""
    h, w = a.shape
    out = np.zeros_like(a)
    if abs(dx) >= w or abs(dy) >= h:
        return out
    out[max(dy, 0):h + min(dy, 0), max(dx, 0):w + min(dx, 0)] = \
        a[max(-dy, 0):h + min(-dy, 0), max(-dx, 0):w + min(-dx, 0)]
    return out


def dilate(mask, radius):
    """Cheap isotropic expansion: source-over the mask at every offset.

    radius <= 0 returns the input mask unchanged (same object).
    """
    radius = int(radius)
    if mask is None or radius <= 0:
        return mask
    a = mask.coverage()
    out = np.zeros_like(a)
    for dy in range(-radius, radius + 1):
        for dx in range(-radius, radius + 1):
            s = _shift(a, dx, dy)
            out = s + out * (1.0 - s)
    return AlphaMask(np.clip(np.rint(out * 255.0), 0, 255))


def subtract(mask, *others):
    """Destination-out: erase every other mask from `mask`."""
    a = mask.coverage()
    for other in others:
        if other is None:
            continue
        a *= 1.0 - other.coverage()
    return AlphaMask(np.clip(np.rint(a * 255.0), 0, 255))


def clip_rgba(layer, mask):
    """Destination-in: keep a premultiplied RGBA layer only where the mask is."""
    return layer * mask.coverage()[:, :, np.newaxis]


def _upsample(small, height, width):
    """Bilinear resize of an (h, w) or (h, w, C) float array to (height, width)."""
    if small.ndim == 2:
        img = Image.fromarray(np.ascontiguousarray(small, dtype=np.float32))
        return np.asarray(img.resize((width, height), Image.Resampling.BILINEAR))
    out = np.empty((height, width) + small.shape[2:], dtype=np.float32)
    for c in range(small.shape[2]):
        out[:, :, c] = _upsample(small[:, :, c], height, width)
    return out


def gaussian_blur(layer, sigma):
    """Blur an (H, W) or (H, W, C) float array with std-dev `sigma` pixels.

    Large radii go through downsample -> gaussian -> bilinear upsample,
    which is indistinguishable for glow and an order of magnitude cheaper.
    """
    if sigma <= 0:
        return layer
    factor = 4 if sigma >= 8 else 2 if sigma >= 4 else 1
    spatial = (sigma / factor, sigma / factor) + (0,) * (layer.ndim - 2)
    if factor == 1:
        return _scipy_gaussian(layer, spatial, mode="constant")

    h, w = layer.shape[:2]
    ph, pw = -h % factor, -w % factor
    pad = ((0, ph), (0, pw)) + ((0, 0),) * (layer.ndim - 2)
    padded = np.pad(layer, pad)
    sh, sw = padded.shape[0] // factor, padded.shape[1] // factor
    small = padded.reshape((sh, factor, sw, factor) + layer.shape[2:]).mean(axis=(1, 3))
    blurred = _scipy_gaussian(small, spatial, mode="constant")
    up = _upsample(blurred, sh * factor, sw * factor)
    return up[:h, :w].astype(layer.dtype, copy=False)


def fill_through_mask(target, mask, rgb, alpha=1.0):
    """Paint a solid colour clipped to `mask` onto a FrameBuffer."""
    if mask is None or alpha <= 0:
        return target
    coverage = mask.coverage() * np.float32(alpha)
    return target.over(solid_layer(coverage.shape, rgb, coverage))


def glow_fill(target, mask, rgb, alpha, shadow_rgb, shadow_alpha, blur):
    """Solid fill through a mask with a blurred coloured shadow underneath.

    Mirrors a canvas fill drawn with shadowColor/shadowBlur set: the shadow
    is the fill's alpha blurred with sigma = blur / 2.
    """
    if mask is None or alpha <= 0:
        return target
    coverage = mask.coverage() * np.float32(alpha)
    if blur > 0 and shadow_alpha > 0:
        shadow = gaussian_blur(coverage, blur / 2.0) * np.float32(shadow_alpha)
        target.over(solid_layer(coverage.shape, shadow_rgb, np.clip(shadow, 0.0, 1.0)))
    return target.over(solid_layer(coverage.shape, rgb, coverage))
