#!/usr/bin/env python3
"""
Tests for the turbulence field and the energy mask compositor.

Verifies:
1. Working and noise resolutions stay within their caps
2. Field synthesis is a pure function of time
3. Energy alpha is confined to the outline
4. EnergyRenderer reuses its buffers and renders at plan size
"""

import numpy as np

from neon_mosaic.buffers import FrameBuffer
from neon_mosaic.energy import (
    EnergyBuffer, EnergyRenderer, compose, field_sampler, render_energy_frame,
    resample_layer, working_size,
)
from neon_mosaic.masks import AlphaMask
from neon_mosaic.turbulence import (
    FieldSampler, NoiseState, noise_resolution, sample_field, synthesize,
)


def _ring(width, height, thickness=3):
    a = np.zeros((height, width), dtype=np.uint8)
    a[:thickness, :] = 255
    a[-thickness:, :] = 255
    a[:, :thickness] = 255
    a[:, -thickness:] = 255
    return AlphaMask(a)


def test_resolutions():
    """Working size caps the long edge; noise side is clamped."""
    print("Testing working/noise resolution...")
    assert working_size(1040, 520) == (520, 260, 0.5), working_size(1040, 520)
    assert working_size(300, 200) == (300, 200, 1.0), "small plans are not upscaled"
    ew, eh, scale = working_size(3000, 1200)
    assert max(ew, eh) <= 520, f"long edge must be capped: {ew}x{eh}"

    assert noise_resolution(520, 400) == 300, "0.75 of the short edge"
    assert noise_resolution(100, 100) == 220, "clamped to the minimum"
    assert noise_resolution(1000, 1000) == 380, "clamped to the maximum"
    print("  ✓ resolutions correct")


def test_synthesis_deterministic():
    """Identical time gives an identical field; the state is reused."""
    print("Testing turbulence synthesis...")
    a = synthesize(NoiseState(32), 1.5)
    b = synthesize(NoiseState(32), 1.5)
    assert np.array_equal(a.data, b.data), "field must depend only on time"
    c = synthesize(NoiseState(32), 2.5)
    assert not np.array_equal(a.data, c.data), "field should move over time"

    assert NoiseState.ensure(a, 32) is a, "same resolution reuses the state"
    assert NoiseState.ensure(a, 40) is not a

    dx, dy, spark, fil = sample_field(a.data, 0.0, 0.0)
    assert abs(float(dx) - (a.data[0, 0, 0] / 255.0 * 2 - 1)) < 1e-5, "corner sample is the pixel"
    assert abs(float(fil) - a.data[0, 0, 3] / 255.0) < 1e-5
    dx, dy, spark, fil = a.decode()
    assert dx.min() >= -1 and dx.max() <= 1 and fil.min() >= 0 and fil.max() <= 1
    print("  ✓ synthesis deterministic")


def test_energy_confined_to_outline():
    """Zero outline gives a transparent buffer; alpha only appears on the outline."""
    print("Testing energy compose...")
    state = synthesize(NoiseState(24), 0.8)

    energy = EnergyBuffer(40, 30)
    compose(energy, AlphaMask.empty(80, 60), state, 0.8)
    assert not energy.data.any(), "empty outline must give a fully transparent buffer"

    full = AlphaMask(np.full((60, 80), 255, dtype=np.uint8))
    compose(energy, full, state, 0.8)
    assert (energy.alpha > 0).all(), "a full outline lights every pixel"
    assert (energy.data[:, :, :3] == 255).all(), "energy colour is white"

    ring = _ring(80, 60, thickness=10)
    compose(energy, ring, state, 0.8)
    assert energy.alpha[15, 20] == 0, "centre of the ring stays dark"
    assert energy.alpha.any(), "ring should produce some energy"
    print("  ✓ energy confined to outline")


def test_energy_frame_layers_onto_base():
    """Glow stack adds onto a copy of the base at base resolution."""
    print("Testing render_energy_frame...")
    base = FrameBuffer(60, 40)
    empty = EnergyBuffer(30, 20)
    out = render_energy_frame(base, empty, 0.4, scale=0.5)
    assert out.size == (60, 40), "upscaled to the base size"
    assert not out.rgba.any(), "no energy, no glow"
    assert out is not base
    print("  ✓ energy frame layering correct")


def test_energy_renderer():
    """prepare() sizes buffers once; render() returns plan-size frames."""
    print("Testing EnergyRenderer...")
    renderer = EnergyRenderer(max_dim=64, noise_min_res=16, noise_max_res=32)
    outline = _ring(128, 96, thickness=8)
    renderer.prepare(128, 96, outline)
    assert renderer.ready
    assert (renderer.energy_buffer.width, renderer.energy_buffer.height) == (64, 48)
    assert renderer.noise_state.res == 32

    buf, state = renderer.energy_buffer, renderer.noise_state
    renderer.prepare(128, 96, outline)
    assert renderer.energy_buffer is buf and renderer.noise_state is state, \
        "buffers are reused for the same fingerprint"

    base = FrameBuffer(128, 96)
    sampler = renderer.sampler
    frame = renderer.render(base, 0.3)
    renderer.render(base, 0.4)
    assert renderer.sampler is sampler, "bilinear taps are reused across frames"
    assert frame.size == (128, 96)
    assert frame.alpha.max() > 0, "energy should light the outline"
    assert not base.rgba.any(), "the base frame is never modified"
    print("  ✓ EnergyRenderer correct")


def test_field_sampler_cache():
    """Cached taps sample exactly like a fresh bilinear lookup."""
    print("Testing FieldSampler...")
    state = synthesize(NoiseState(24), 1.1)
    energy = EnergyBuffer(40, 30)
    sampler = field_sampler(energy, state.res)
    assert sampler.matches(24, (30, 40))
    assert field_sampler(energy, 24, sampler) is sampler, "same grid reuses the taps"
    assert field_sampler(energy, 32, sampler) is not sampler, "new resolution rebuilds"

    u = np.arange(40, dtype=np.float64)[np.newaxis, :] / 39
    v = np.arange(30, dtype=np.float64)[:, np.newaxis] / 29
    cached = sampler.sample(state.data)
    fresh = FieldSampler(24, u, v).sample(state.data)
    direct = sample_field(state.data, u, v)
    for a, b, c in zip(cached, fresh, direct):
        assert a.shape == (30, 40)
        assert np.allclose(a, b) and np.allclose(a, c)
    print("  ✓ sampler cache correct")


def test_resample_layer():
    """Upscale and sub-pixel jitter happen in one bilinear pass."""
    print("Testing resample_layer...")
    rng = np.random.default_rng(3)
    layer = rng.random((8, 10, 4), dtype=np.float32)

    same = resample_layer(layer, 10, 8)
    assert same.shape == (8, 10, 4) and same.dtype == np.float32
    assert np.allclose(same, layer, atol=1e-5), "same size, no offset is the identity"

    shifted = resample_layer(layer, 10, 8, offset=(1.0, 0.0))
    assert np.allclose(shifted[:, 1:], layer[:, :-1], atol=1e-5), "content moves right by one pixel"

    flat = np.full((8, 10, 4), 0.5, dtype=np.float32)
    up = resample_layer(flat, 25, 20)
    assert up.shape == (20, 25, 4)
    assert np.allclose(up[2:-2, 2:-2], 0.5, atol=1e-5), "upscaling keeps a flat layer flat"
    print("  ✓ resample correct")


if __name__ == "__main__":
    print("\n=== Testing Turbulence + Energy ===\n")

    test_resolutions()
    test_synthesis_deterministic()
    test_energy_confined_to_outline()
    test_energy_frame_layers_onto_base()
    test_energy_renderer()
    test_field_sampler_cache()
    test_resample_layer()

    print("\n✓ All tests passed!\n")
