"""
Region Masks and Tile Classification

A RegionSet is every stencil one plan needs, built once from the named shape
images at plan resolution. "body" is derived: the silhouette minus hair,
headband, beak, feet and slightly dilated eyes, so body text never peeks
around the feature edges.

Tiles classify by nearest-pixel membership in a fixed priority order; feature
regions may overlap near the silhouette boundary and the first match wins.
"""

import logging

from .masks import AlphaMask, to_alpha_mask, dilate, subtract

logger = logging.getLogger(__name__)

SHAPE_NAMES = ("silhouette", "hair", "headband", "beak", "feet",
               "eyes", "pupils", "nostrils", "outline")

# Classification priority; anything else falls through to "body"
REGION_PRIORITY = ("hair", "headband", "beak", "feet")

# Region glow order and neon intensity (body slightly hotter)
GLOW_ORDER = (
    ("body", 1.05),
    ("beak", 0.95),
    ("feet", 0.95),
    ("headband", 1.0),
    ("hair", 0.95),
)

REGIONS = ("body",) + REGION_PRIORITY


def required_shapes(headband_active):
    """Shape names that must be present before the final render."""
    names = ["silhouette", "hair"]
    if headband_active:
        names.append("headband")
    names += ["beak", "feet", "eyes", "pupils", "nostrils"]
    return names


class RegionSet:
    """Per-plan collection of region stencils."""

    def __init__(self, masks, headband_requested=False):
        self.masks = dict(masks)
        self.width, self.height = self.masks["silhouette"].size
        for name in SHAPE_NAMES:
            if name not in self.masks:
                self.masks[name] = None
        headband = self.masks.get("headband")
        self.headband_active = bool(headband_requested and headband is not None
                                    and not headband.is_empty)
        if headband_requested and not self.headband_active:
            logger.info("Headband region unavailable; its tiles fall back to other regions")
        if not self.headband_active:
            self.masks["headband"] = None

        eyes = self.masks.get("eyes") or AlphaMask.empty(self.width, self.height)
        self.eyes = eyes
        self.eyes_clean = dilate(eyes, 1)
        self.eyes_topcoat = dilate(eyes, 2)
        self.body = subtract(
            self.masks["silhouette"],
            self.masks["hair"], self.masks["headband"],
            self.masks["beak"], self.masks["feet"], self.eyes_clean,
        )

    @classmethod
    def build(cls, images, width, height, headband_active=False, outline_threshold=12):
        """Rasterize every named shape image into a RegionSet.

        Missing (None) images become empty masks; the outline uses a higher
        luminance threshold to drop faint anti-aliasing.
        """
        masks = {}
        for name in SHAPE_NAMES:
            if name == "headband" and not headband_active:
                continue
            img = images.get(name)
            if name == "outline" and img is None:
                continue
            threshold = outline_threshold if name == "outline" else 0
            masks[name] = to_alpha_mask(img, width, height, threshold)
        return cls(masks, headband_requested=headband_active)

    @property
    def size(self):
        return (self.width, self.height)

    @property
    def outline(self):
        mask = self.masks.get("outline")
        return None if mask is None or mask.is_empty else mask

    def mask(self, name):
        """Stencil for a region or shape name (None when absent)."""
        if name == "body":
            return self.body
        return self.masks.get(name)

    def classify_point(self, x, y):
        for name in REGION_PRIORITY:
            m = self.masks.get(name)
            if m is not None and m.contains(x, y):
                return name
        return "body"

    def classify(self, tile):
        return self.classify_point(tile.x, tile.y)

    def classify_tiles(self, tiles):
        """Bucket renderable tiles by region, preserving plan order."""
        buckets = {name: [] for name in REGIONS}
        for it in tiles:
            if not it.renders:
                continue
            buckets[self.classify(it)].append(it)
        return buckets
