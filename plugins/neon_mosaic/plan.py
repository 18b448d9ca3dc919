"""
Mosaic Plan Model

A Plan is the tile layout for one render pass: plan-space size, the ordered
text tiles (position, font size, colour) and the population it was built for.
Plans are immutable; the preview -> final transition swaps in a new instance.

Also provides the name search used by the highlight overlay.
"""

import re
from dataclasses import dataclass, field, replace

from .errors import PlanError

ELLIPSIS = "…"
DEFAULT_FONT_PX = 12
MIN_FONT_PX = 7


@dataclass(frozen=True)
class Tile:
    text: str
    x: float
    y: float
    size: float = DEFAULT_FONT_PX
    color: str = None
    full_text: str = None
    kind: str = "text"

    @property
    def renders(self):
        return self.kind == "text"

    @property
    def font_px(self):
        """Rendered font size: the stored size (12 if missing), at least 7px."""
        return max(MIN_FONT_PX, float(self.size or DEFAULT_FONT_PX))

    @property
    def label(self):
        return self.full_text or self.text

    @classmethod
    def from_dict(cls, d):
        try:
            return cls(
                text=str(d.get("text", "")),
                x=float(d.get("x", 0) or 0),
                y=float(d.get("y", 0) or 0),
                size=float(d.get("size") or DEFAULT_FONT_PX),
                color=d.get("color") or None,
                full_text=d.get("fullText") or d.get("search") or None,
                kind=str(d.get("kind", "text")),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise PlanError(f"Malformed tile {d!r}: {e}") from e

    def to_dict(self):
        d = {"kind": self.kind, "text": self.text, "x": self.x, "y": self.y,
             "size": self.size}
        if self.color:
            d["color"] = self.color
        if self.full_text:
            d["fullText"] = self.full_text
        return d


@dataclass(frozen=True)
class Plan:
    width: int
    height: int
    items: tuple = field(default_factory=tuple)
    subscriber_count: int = 0
    is_preview: bool = False
    names_requested: int = 0
    names_placed: int = 0
    unlock_headband: bool = None

    def __post_init__(self):
        if int(self.width) <= 0 or int(self.height) <= 0:
            raise PlanError(f"Plan size must be positive, got {self.width}x{self.height}")

    @property
    def size(self):
        return (int(self.width), int(self.height))

    @property
    def text_tiles(self):
        return [it for it in self.items if it.renders]

    def promoted(self, subscriber_count=None):
        """Non-preview copy of this plan (small channels reuse the preview layout)."""
        return replace(
            self, is_preview=False,
            subscriber_count=self.subscriber_count if subscriber_count is None else subscriber_count,
        )

    def with_population(self, subscriber_count, is_preview=None):
        return replace(
            self, subscriber_count=int(subscriber_count),
            is_preview=self.is_preview if is_preview is None else bool(is_preview),
        )

    @classmethod
    def from_dict(cls, d, subscriber_count=None, is_preview=None):
        """Parse the layout JSON returned by the data source."""
        if not isinstance(d, dict):
            raise PlanError(f"Plan must be an object, got {type(d).__name__}")
        try:
            width = int(d["width"])
            height = int(d["height"])
        except (KeyError, TypeError, ValueError) as e:
            raise PlanError(f"Plan is missing a valid width/height: {e}") from e
        items = tuple(Tile.from_dict(it) for it in d.get("items") or ())
        unlock = d.get("unlockHeadbandTails")
        return cls(
            width=width,
            height=height,
            items=items,
            subscriber_count=int(subscriber_count if subscriber_count is not None
                                 else d.get("subscriberCount", 0) or 0),
            is_preview=bool(is_preview if is_preview is not None else d.get("isPreview", False)),
            names_requested=int(d.get("namesRequested", 0) or 0),
            names_placed=int(d.get("namesPlaced", len(items)) or 0),
            unlock_headband=None if unlock is None else bool(unlock),
        )

    def to_dict(self):
        d = {
            "width": self.width,
            "height": self.height,
            "items": [it.to_dict() for it in self.items],
            "subscriberCount": self.subscriber_count,
            "isPreview": self.is_preview,
            "namesRequested": self.names_requested,
            "namesPlaced": self.names_placed,
        }
        if self.unlock_headband is not None:
            d["unlockHeadbandTails"] = self.unlock_headband
        return d


def normalize(s):
    return re.sub(r"\s+", " ", str(s or "").lower()).strip()


def strip_ellipsis(s):
    s = str(s or "")
    return s[:-1] if s.endswith(ELLIPSIS) else s


def search_tiles(plan, query, min_length=2):
    """Tiles whose name matches `query` (case/whitespace-insensitive).

    Matches a substring of the full or displayed text, or a query that
    starts with the visible part of an ellipsis-truncated name.
    """
    q = normalize(query)
    if plan is None or len(q) < min_length:
        return []
    hits = []
    for it in plan.text_tiles:
        full = normalize(it.label)
        disp = normalize(it.text)
        truncated = it.text.endswith(ELLIPSIS) and q.startswith(normalize(strip_ellipsis(it.text)))
        if q in full or q in disp or truncated:
            hits.append(it)
    return hits
