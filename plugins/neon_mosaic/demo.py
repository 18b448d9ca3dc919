"""
Offline Demo Fixtures

Synthetic shape images (white on black, one per named region) and tile
plans for running the renderer without a data source, the local analogue of
the server's seed-fakes endpoint.
"""

import numpy as np
from PIL import Image, ImageChops, ImageDraw, ImageFilter

from .plan import ELLIPSIS, Plan, Tile

DEMO_SIZE = (600, 700)

# Normalized (x0, y0, x1, y1) ellipses per shape
_SHAPES = {
    "silhouette": [(0.22, 0.36, 0.78, 0.93), (0.26, 0.04, 0.74, 0.50),
                   (0.24, 0.88, 0.46, 0.99), (0.54, 0.88, 0.76, 0.99)],
    "hair": [(0.42, 0.00, 0.50, 0.11), (0.48, 0.01, 0.56, 0.10), (0.45, 0.02, 0.60, 0.12)],
    "beak": [(0.37, 0.28, 0.63, 0.41)],
    "feet": [(0.24, 0.88, 0.46, 0.99), (0.54, 0.88, 0.76, 0.99)],
    "eyes": [(0.33, 0.17, 0.46, 0.27), (0.54, 0.17, 0.67, 0.27)],
    "pupils": [(0.38, 0.20, 0.42, 0.24), (0.58, 0.20, 0.62, 0.24)],
    "nostrils": [(0.46, 0.30, 0.48, 0.32), (0.52, 0.30, 0.54, 0.32)],
}
_HEADBAND = (0.27, 0.12, 0.73, 0.16)

_PALETTE = ("#f472b6", "#22d3ee", "#facc15", "#a3e635", "#fb923c", "#c084fc", "#ffffff")
_SYLLABLES = ("ka", "zu", "mi", "ro", "ne", "ty", "lo", "sa", "vi", "po", "da", "qu")


def _canvas(size):
    return Image.new("L", size, 0)


def _draw_ellipses(size, boxes):
    w, h = size
    img = _canvas(size)
    draw = ImageDraw.Draw(img)
    for x0, y0, x1, y1 in boxes:
        draw.ellipse((x0 * w, y0 * h, x1 * w, y1 * h), fill=255)
    return img


def shape_image(name, size=DEMO_SIZE):
    """One synthetic white-on-black shape image."""
    w, h = size
    if name == "headband":
        img = _canvas(size)
        x0, y0, x1, y1 = _HEADBAND
        ImageDraw.Draw(img).rectangle((x0 * w, y0 * h, x1 * w, y1 * h), fill=255)
        # keep the band on the head
        return ImageChops.multiply(img, shape_image("silhouette", size))
    if name == "outline":
        sil = shape_image("silhouette", size)
        inner = sil.filter(ImageFilter.MinFilter(7))
        return ImageChops.subtract(sil, inner)
    return _draw_ellipses(size, _SHAPES[name])


def demo_images(size=DEMO_SIZE, skip=()):
    """Every named shape image; names in `skip` map to None (failed load)."""
    names = list(_SHAPES) + ["headband", "outline"]
    return {name: None if name in skip else shape_image(name, size) for name in names}


def fake_name(i, rng):
    n = 2 + int(rng.integers(0, 4))
    name = "".join(_SYLLABLES[int(k)] for k in rng.integers(0, len(_SYLLABLES), n))
    return f"{name.capitalize()}{i % 97}"


def make_demo_plan(width=DEMO_SIZE[0], height=DEMO_SIZE[1], count=800,
                   population=None, seed=1, preview=False):
    """Plan with `count` named tiles scattered inside the demo silhouette."""
    rng = np.random.default_rng(seed)
    sil = np.asarray(shape_image("silhouette", (width, height)))
    ys, xs = np.nonzero(sil)
    items = []
    if len(xs):
        picks = rng.integers(0, len(xs), count)
        for i, k in enumerate(picks):
            full = fake_name(i, rng)
            text = full if len(full) <= 9 else full[:8] + ELLIPSIS
            items.append(Tile(
                text=text,
                x=float(xs[k]),
                y=float(ys[k]),
                size=float(rng.integers(8, 15)),
                color=_PALETTE[int(rng.integers(0, len(_PALETTE)))],
                full_text=full,
            ))
    return Plan(
        width=width,
        height=height,
        items=tuple(items),
        subscriber_count=count if population is None else int(population),
        is_preview=preview,
        names_requested=count,
        names_placed=len(items),
    )
