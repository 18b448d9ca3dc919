"""
Data Source Adapters

MosaicClient talks to the mosaic HTTP API (stats, shape-mask URLs, tile
layouts), PlanCache keeps the last full plan on disk for an instant first
paint, and MosaicSession walks the fetch sequence and feeds a
RenderController:

    cached plan -> stats -> silhouette -> preview plan -> other shapes
    -> full plan (or promoted preview) -> cache write

Every stage is a plain synchronous call; `MosaicSession.stages()` yields
between them so a host can keep ticking frames while the session loads.
"""

import json
import logging
import os
import time

import requests

from .errors import PlanError, SourceError
from .masks import load_image
from .plan import Plan
from .regions import SHAPE_NAMES

logger = logging.getLogger(__name__)

OUTLINE_URL = "/static/outline-mask0.png"


class MosaicClient:
    """Thin requests wrapper around the mosaic API."""

    def __init__(self, base="http://127.0.0.1:8000", timeout=20.0, session=None):
        self.base = base.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def url(self, path):
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return self.base + path

    def _request(self, method, path, **kwargs):
        url = self.url(path)
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise SourceError(f"{method} {url} failed: {e}") from e
        if not resp.ok:
            raise SourceError(f"{resp.status_code} {resp.reason} for {url}")
        return resp

    def _json(self, method, path, **kwargs):
        resp = self._request(method, path, **kwargs)
        try:
            return resp.json()
        except ValueError as e:
            raise SourceError(f"Invalid JSON from {resp.url}: {e}") from e

    def get_stats(self):
        return self._json("GET", "/psyduck/stats")

    def get_masks(self):
        return self._json("GET", "/psyduck/masks")

    def get_slots(self, limit, order="oldest"):
        """Tile layout for the `limit` oldest (or most recent) subscribers."""
        data = self._json("GET", "/psyduck/slots", params={"limit": int(limit), "order": order})
        try:
            return Plan.from_dict(data)
        except PlanError as e:
            raise SourceError(f"Malformed plan from /psyduck/slots: {e}") from e

    def seed_fakes(self, count=1000):
        return self._json("POST", "/psyduck/seed-fakes", json={"count": int(count)})

    def load_image(self, path):
        resp = self._request("GET", path)
        img = load_image(resp.content)
        if img is None:
            raise SourceError(f"Undecodable image at {self.url(path)}")
        return img


class PlanCache:
    """Best-effort JSON file holding the last full plan under a versioned key."""

    def __init__(self, path, key="neon-mosaic:lastPlan:v3", ttl_seconds=30 * 60, clock=time.time):
        self.path = os.path.expanduser(path)
        self.key = key
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def read(self):
        """Cached plan, or None when absent, stale or unreadable."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            entry = data[self.key]
            cached_at = float(entry["cachedAt"])
            if self.clock() * 1000.0 - cached_at > self.ttl_seconds * 1000.0:
                logger.debug("Cached plan is stale")
                return None
            return Plan.from_dict(entry["plan"], is_preview=False)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.debug("Ignoring unreadable plan cache %s: %s", self.path, e)
            return None

    def write(self, plan):
        entry = {"cachedAt": int(self.clock() * 1000), "plan": plan.to_dict()}
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump({self.key: entry}, f)
            return True
        except OSError as e:
            logger.debug("Could not write plan cache %s: %s", self.path, e)
            return False


class MosaicSession:
    """Fetch sequence for one render session."""

    def __init__(self, client, controller, cache=None, config=None):
        self.client = client
        self.controller = controller
        self.config = config or controller.config
        self.cache = cache
        self.total = 0
        self.full_limit = 0
        self.preview_limit = 0

    def limits(self, total):
        """(full, preview) tile limits for a population."""
        full = min(self.config.activation_threshold, max(0, int(total)))
        return full, min(self.config.preview_limit, full)

    def run(self):
        """Run every stage. Returns False when the session failed."""
        for _ in self.stages():
            pass
        return self.controller.error is None

    def stages(self):
        try:
            yield from self._stages()
        except SourceError as e:
            self.controller.fail(str(e))

    def _stages(self):
        ctl = self.controller

        if self.cache is not None:
            cached = self.cache.read()
            if cached is not None:
                logger.info("Painting cached plan (%d tiles)", len(cached.items))
                ctl.set_population(cached.subscriber_count)
                ctl.set_full_plan(cached)
                yield "cache"

        stats = self.client.get_stats()
        try:
            self.total = int((stats or {}).get("total") or 0)
        except (TypeError, ValueError) as e:
            raise SourceError(f"Malformed stats payload {stats!r}") from e
        self.full_limit, self.preview_limit = self.limits(self.total)
        ctl.set_population(self.total)
        logger.info("Population %d (full limit %d, preview limit %d)",
                    self.total, self.full_limit, self.preview_limit)
        yield "stats"

        urls = dict((self.client.get_masks() or {}).get("masks") or {})
        urls.setdefault("outline", OUTLINE_URL)

        ctl.set_shape_image("silhouette", self._load_shape("silhouette", urls))
        yield "silhouette"

        preview = None
        if self.preview_limit > 0:
            preview = self.client.get_slots(self.preview_limit, "oldest")
            preview = preview.with_population(self.total, is_preview=True)
            ctl.set_preview_plan(preview)
            yield "preview"

        others = {name: self._load_shape(name, urls)
                  for name in SHAPE_NAMES if name != "silhouette"}
        ctl.set_shape_images(others)
        yield "shapes"

        if self.full_limit > self.preview_limit:
            full = self.client.get_slots(self.full_limit, "oldest")
            full = full.with_population(self.total, is_preview=False)
            ctl.set_full_plan(full)
            if self.cache is not None:
                self.cache.write(full)
            yield "full"
        elif preview is not None:
            # small channels: the preview layout already holds everyone
            ctl.promote_preview()
            yield "promoted"

    def _load_shape(self, name, urls):
        url = urls.get(name)
        if not url:
            logger.warning("No image listed for shape %r", name)
            return None
        try:
            return self.client.load_image(url)
        except SourceError as e:
            logger.warning("Shape %r failed to load: %s", name, e)
            return None
