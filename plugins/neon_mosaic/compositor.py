"""
Layer Compositor

Text layers are drawn with Pillow onto transparent plan-size canvases, then
assembled into a premultiplied FrameBuffer:

  translucent silhouette -> headband emphasis glow -> per-region neon bloom
  -> static outline glow (no energy phase only) -> eye topcoat
  -> pupils/nostrils faded in by population

Neon bloom per region: clip to the region mask, add four blurred copies of
decreasing radius and increasing opacity, then one crisp source-over pass.
"""

import logging
from functools import lru_cache

import numpy as np
from PIL import Image, ImageColor, ImageDraw, ImageFont

from .buffers import FrameBuffer
from .masks import clip_rgba, fill_through_mask, gaussian_blur, glow_fill
from .regions import GLOW_ORDER

logger = logging.getLogger(__name__)

WHITE = (255, 255, 255)
CYAN = (34, 211, 238)
DETAIL_DARK = (17, 24, 39)
HEADBAND_GLOW = (255, 70, 110)
HEADBAND_FILL = (255, 60, 90)
PREVIEW_TEXT = "#111"
DEFAULT_TEXT = "#000"


@lru_cache(maxsize=64)
def _font(px):
    return ImageFont.load_default(size=px)


@lru_cache(maxsize=1024)
def parse_color(color):
    """CSS colour string -> RGB tuple; unknown strings render black."""
    if not color:
        return (0, 0, 0)
    try:
        return ImageColor.getrgb(color)[:3]
    except ValueError:
        logger.debug("Unparseable tile colour %r, using black", color)
        return (0, 0, 0)


class TextCanvas:
    """Transparent plan-size canvas that tiles are drawn onto incrementally."""

    def __init__(self, width, height, color=None):
        self.width = int(width)
        self.height = int(height)
        self.color = color
        self.image = Image.new("RGBA", (self.width, self.height), (0, 0, 0, 0))
        self._draw = ImageDraw.Draw(self.image)
        self.count = 0

    def draw(self, tiles):
        for it in tiles:
            if not it.renders:
                continue
            fill = parse_color(self.color or it.color or DEFAULT_TEXT)
            font = _font(int(round(it.font_px)))
            self._draw.text((it.x, it.y), it.text, fill=fill + (255,), font=font, anchor="mm")
            self.count += 1
        return self

    def to_layer(self):
        """Premultiplied float RGBA array of the canvas."""
        return FrameBuffer.from_rgba8(np.asarray(self.image)).rgba


def render_text_layer(tiles, width, height, color=None):
    """Plain filled text for `tiles` on a transparent plan-size layer."""
    return TextCanvas(width, height, color).draw(tiles).to_layer()


def draw_layer_neon(frame, layer, mask, intensity=1.0):
    """Composite a text layer, clipped to `mask`, with an additive neon bloom."""
    if mask is None:
        return frame
    masked = clip_rgba(layer, mask)
    if not masked[:, :, 3].any():
        return frame

    passes = (
        (max(10.0, 24.0 * intensity), 0.22 * intensity),   # outer
        (max(6.0, 14.0 * intensity), 0.34 * intensity),    # mid
        (max(3.0, 7.0 * intensity), 0.55 * intensity),     # inner
        (0.0, 0.12 * intensity),                            # core boost
    )
    for blur, alpha in passes:
        frame.add(gaussian_blur(masked, blur), alpha)

    # crisp pass
    return frame.over(masked)


def detail_alpha(population, full_at=1000):
    """Pupil/nostril opacity: 0 with no population, 1 at `full_at` and above."""
    if full_at <= 0:
        return 1.0
    return max(0.0, min(1.0, population / full_at))


def draw_outline_glow(frame, outline, shadow_alpha=0.55, blur=18):
    """Static white outline with a cyan glow underneath."""
    if outline is None:
        return frame
    return glow_fill(frame, outline, WHITE, 0.95, CYAN, shadow_alpha, blur)


def build_final_frame(plan, regions, population, energy_active=False, detail_full_population=1000):
    """Full-colour layered composite for a non-preview plan."""
    w, h = plan.size
    frame = FrameBuffer(w, h)
    buckets = regions.classify_tiles(plan.items)
    logger.debug("Region buckets: %s", {k: len(v) for k, v in buckets.items()})

    # translucent silhouette (lets a backdrop show through)
    fill_through_mask(frame, regions.mask("silhouette"), WHITE, 0.12)

    if regions.headband_active:
        glow_fill(frame, regions.mask("headband"), HEADBAND_FILL, 0.14,
                  HEADBAND_GLOW, 0.60, 26)

    for name, intensity in GLOW_ORDER:
        if name == "headband" and not regions.headband_active:
            continue
        tiles = buckets[name]
        if not tiles:
            continue
        layer = render_text_layer(tiles, w, h)
        draw_layer_neon(frame, layer, regions.mask(name), intensity)

    if not energy_active:
        draw_outline_glow(frame, regions.outline)

    # topcoat hides any glow bleeding into the eye whites
    fill_through_mask(frame, regions.eyes_topcoat, WHITE, 1.0)
    fill_through_mask(frame, regions.eyes, WHITE, 1.0)

    details = detail_alpha(population, detail_full_population)
    fill_through_mask(frame, regions.mask("pupils"), DETAIL_DARK, details)
    fill_through_mask(frame, regions.mask("nostrils"), DETAIL_DARK, details)
    return frame


class PreviewCompositor:
    """Low-fidelity progressive composite of a preview plan.

    Each `step()` draws one batch of monochrome tiles and recomposites
    translucent silhouette + silhouette-clipped text + static outline glow.
    """

    def __init__(self, plan, silhouette, outline=None, draw_max=2000, min_batch=120):
        self.plan = plan
        self.silhouette = silhouette
        self.outline = outline
        self.items = plan.text_tiles
        self.total = min(int(draw_max), len(self.items))
        self.batch = max(int(min_batch), self.total // 10)
        self.text = TextCanvas(plan.width, plan.height, color=PREVIEW_TEXT)
        self.frame = None
        self.drawn = 0

    @property
    def done(self):
        return self.drawn >= self.total

    def step(self):
        """Draw the next batch and rebuild the composite. Returns the frame."""
        end = min(self.total, self.drawn + self.batch)
        self.text.draw(self.items[self.drawn:end])
        self.drawn = end

        frame = FrameBuffer(self.plan.width, self.plan.height)
        fill_through_mask(frame, self.silhouette, WHITE, 0.10)
        frame.over(clip_rgba(self.text.to_layer(), self.silhouette))
        if self.outline is not None:
            draw_outline_glow(frame, self.outline, shadow_alpha=0.40, blur=12)
        self.frame = frame
        return frame
