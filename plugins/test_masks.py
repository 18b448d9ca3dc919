#!/usr/bin/env python3
"""
Tests for pixel buffers and the mask pipeline.

Verifies:
1. Luminance-to-alpha conversion, thresholds and absent sources
2. Dilation, subtraction and nearest-pixel membership
3. FrameBuffer compositing operators
4. Turbulence field packing
"""

import numpy as np
from PIL import Image

from neon_mosaic.buffers import FrameBuffer, PixelBuffer, encode_field, decode_field
from neon_mosaic.masks import (
    AlphaMask, to_alpha_mask, dilate, subtract, load_image,
    gaussian_blur, fill_through_mask,
)


def _gray(value, size=(8, 6)):
    return Image.new("RGB", size, (value, value, value))


def test_alpha_mask_conversion():
    """White becomes opaque, black transparent, mid-gray keeps its luminance."""
    print("Testing to_alpha_mask...")
    white = to_alpha_mask(_gray(255), 8, 6)
    assert white.alpha.shape == (6, 8), f"mask should be HxW, got {white.alpha.shape}"
    assert (white.alpha == 255).all(), "pure white should be fully opaque"

    black = to_alpha_mask(_gray(0), 8, 6)
    assert black.is_empty, "pure black should be empty"

    mid = to_alpha_mask(_gray(200), 8, 6)
    assert (mid.alpha == 200).all(), f"gray 200 should keep alpha 200: {mid.alpha[0, 0]}"

    faint = to_alpha_mask(_gray(10), 8, 6, threshold=12)
    assert faint.is_empty, "luminance at or below the threshold is dropped"

    rgba = white.to_rgba()
    assert rgba.shape == (6, 8, 4) and not rgba[:, :, :3].any(), "stencil colour must be zero"
    assert (rgba[:, :, 3] == 255).all()

    resized = to_alpha_mask(_gray(255, size=(40, 30)), 10, 5)
    assert resized.size == (10, 5), "source is resized to the target"
    print("  ✓ luminance conversion correct")


def test_alpha_mask_edge_cases():
    """Invalid thresholds raise; missing/undecodable sources become empty masks."""
    print("Testing to_alpha_mask edge cases...")
    for bad in (-1, 256, 1.5, True):
        try:
            to_alpha_mask(_gray(255), 4, 4, threshold=bad)
        except ValueError:
            pass
        else:
            raise AssertionError(f"threshold {bad!r} should raise ValueError")

    absent = to_alpha_mask(None, 12, 7)
    assert absent.size == (12, 7) and absent.is_empty, "None gives an empty mask"

    assert load_image(b"definitely not a png") is None, "garbage bytes decode to None"
    assert load_image(None) is None

    arr = np.full((4, 4, 3), 255, dtype=np.uint8)
    assert (to_alpha_mask(arr, 4, 4).alpha == 255).all(), "numpy input accepted"
    print("  ✓ edge cases handled")


def test_dilate_and_subtract():
    """Dilation grows a mask to a superset; subtraction erases."""
    print("Testing dilate/subtract...")
    a = np.zeros((11, 11), dtype=np.uint8)
    a[5, 5] = 255
    dot = AlphaMask(a)

    assert dilate(dot, 0) is dot, "radius 0 returns the same mask"
    assert dilate(dot, -3) is dot, "negative radius returns the same mask"

    grown = dilate(dot, 2)
    assert (grown.alpha[3:8, 3:8] == 255).all(), "radius 2 covers a 5x5 square"
    assert grown.alpha[5, 8] == 0 and grown.alpha[1, 5] == 0, "nothing beyond the radius"
    assert (grown.alpha >= dot.alpha).all(), "dilation is a superset"

    full = AlphaMask(np.full((11, 11), 255, dtype=np.uint8))
    body = subtract(full, grown, None)
    assert body.alpha[5, 5] == 0, "subtracted region is erased"
    assert body.alpha[0, 0] == 255, "the rest is untouched"
    print("  ✓ dilate/subtract correct")


def test_contains_nearest_clamped():
    """Membership rounds to the nearest pixel and clamps out-of-range points."""
    print("Testing AlphaMask.contains...")
    a = np.zeros((5, 5), dtype=np.uint8)
    a[0, 0] = 255
    a[2, 3] = 255
    m = AlphaMask(a)
    assert m.contains(-40, -40), "far top-left clamps onto pixel (0, 0)"
    assert m.contains(3.4, 1.6), "(3.4, 1.6) rounds to (3, 2)"
    assert not m.contains(3.6, 2.0), "(3.6, 2.0) rounds to (4, 2)"
    assert not m.contains(100, 100)
    print("  ✓ nearest-pixel membership correct")


def test_frame_buffer_ops():
    """Source-over, additive clamp and straight-alpha export."""
    print("Testing FrameBuffer...")
    fb = FrameBuffer(4, 3)
    red = np.zeros((3, 4, 4), dtype=np.float32)
    red[:, :, 0] = 1.0
    red[:, :, 3] = 1.0
    fb.over(red)
    assert np.allclose(fb.rgba[0, 0], [1, 0, 0, 1]), "opaque source replaces"

    fb.add(np.ones((3, 4, 4), dtype=np.float32), 0.5)
    fb.add(np.ones((3, 4, 4), dtype=np.float32), 0.9)
    assert fb.rgba.max() <= 1.0, "additive blending clamps"

    half = FrameBuffer.from_array(np.full((2, 2, 4), 0.5, dtype=np.float32))
    rgba8 = half.to_rgba8()
    assert tuple(rgba8[0, 0]) == (255, 255, 255, 128), f"un-premultiply failed: {rgba8[0, 0]}"

    small = half.resized(1, 1)
    assert small.size == (1, 1)

    fill_through_mask(fb.copy(), AlphaMask(np.zeros((3, 4), dtype=np.uint8)), (0, 255, 0))
    blurred = gaussian_blur(np.ones((20, 20), dtype=np.float32), 9.0)
    assert blurred.shape == (20, 20), "blur keeps the shape"
    assert gaussian_blur(red, 0) is red, "zero sigma is a no-op"
    print("  ✓ FrameBuffer compositing correct")


def test_pixel_buffer_reuse():
    """PixelBuffer.ensure reuses on matching fingerprint only."""
    print("Testing PixelBuffer.ensure...")
    buf = PixelBuffer(16, 8)
    assert PixelBuffer.ensure(buf, 16, 8) is buf, "same fingerprint reuses the buffer"
    other = PixelBuffer.ensure(buf, 16, 9)
    assert other is not buf and other.data.shape == (9, 16, 4)
    print("  ✓ buffer reuse correct")


def test_field_packing():
    """Field components map to bytes as documented, clamped and truncated."""
    print("Testing field packing...")
    packed = encode_field(np.array([-1.0, 0.0, 1.0, 2.0]),
                          np.array([1.0, 0.0, -1.0, -5.0]),
                          np.array([0.0, 0.5, 1.0, 3.0]),
                          np.array([1.0, 0.25, 0.0, -1.0]))
    assert packed.dtype == np.uint8
    assert list(packed[:, 0]) == [0, 127, 255, 255], f"dx bytes: {packed[:, 0]}"
    assert list(packed[:, 1]) == [255, 127, 0, 0], f"dy bytes: {packed[:, 1]}"
    assert list(packed[:, 2]) == [0, 127, 255, 255], f"spark bytes: {packed[:, 2]}"
    assert list(packed[:, 3]) == [255, 63, 0, 0], f"filament bytes: {packed[:, 3]}"

    dx, dy, spark, fil = decode_field(packed)
    assert abs(dx[0] + 1.0) < 1e-9 and abs(dx[2] - 1.0) < 1e-9
    assert abs(spark[1] - 0.5) < 1.0 / 255, "decode within one quantization step"
    print("  ✓ field packing correct")


if __name__ == "__main__":
    print("\n=== Testing Mask Pipeline ===\n")

    test_alpha_mask_conversion()
    test_alpha_mask_edge_cases()
    test_dilate_and_subtract()
    test_contains_nearest_clamped()
    test_frame_buffer_ops()
    test_pixel_buffer_reuse()
    test_field_packing()

    print("\n✓ All tests passed!\n")
