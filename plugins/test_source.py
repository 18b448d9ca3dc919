#!/usr/bin/env python3
"""
Tests for configuration, the data source client, the plan cache and the
session fetch sequence.

Verifies:
1. Config defaults, env overrides and validation
2. Client endpoints and error mapping (no network: fake HTTP session)
3. Cache freshness, key versioning and malformed files
4. Session limits, small-channel promotion, isolated shape failures
"""

import io
import json
import os
import tempfile

import requests
from PIL import Image
from pydantic import ValidationError

from neon_mosaic.config import RenderConfig
from neon_mosaic.controller import Phase, RenderController
from neon_mosaic.demo import demo_images, make_demo_plan
from neon_mosaic.errors import SourceError
from neon_mosaic.plan import Plan
from neon_mosaic.source import MosaicClient, MosaicSession, PlanCache

BASE = "http://mosaic.test"
SIZE = (120, 140)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, content=b"", url=""):
        self.status_code = status_code
        self.reason = "OK" if status_code < 400 else "Error"
        self.payload = payload
        self.content = content
        self.url = url

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self.payload is None:
            raise ValueError("no JSON body")
        return self.payload


class FakeHTTP:
    """Stands in for requests.Session: routes (method, path) to responses."""

    def __init__(self, routes=None, error=None):
        self.routes = routes or {}
        self.error = error
        self.calls = []

    def request(self, method, url, timeout=None, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        path = url[len(BASE):] if url.startswith(BASE) else url
        resp = self.routes.get((method, path))
        if resp is None:
            return FakeResponse(404, url=url)
        resp.url = url
        return resp


class FakeClient:
    """Duck-typed MosaicClient serving demo data."""

    def __init__(self, total, fail=(), stats_error=None):
        self.total = total
        self.fail = set(fail)
        self.stats_error = stats_error
        self.slots = []
        self.images = demo_images(SIZE)

    def get_stats(self):
        if self.stats_error:
            raise SourceError(self.stats_error)
        return {"total": self.total}

    def get_masks(self):
        names = [n for n in self.images if n != "outline"]
        return {"masks": {n: f"/static/{n}.png" for n in names}}

    def get_slots(self, limit, order="oldest"):
        self.slots.append((limit, order))
        return make_demo_plan(*SIZE, count=min(limit, 60))

    def load_image(self, path):
        name = os.path.splitext(os.path.basename(path))[0]
        if path.endswith("outline-mask0.png"):
            name = "outline"
        if name in self.fail:
            raise SourceError(f"404 for {path}")
        return self.images[name]


def _png_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), (255, 255, 255)).save(buf, format="PNG")
    return buf.getvalue()


def _config(**overrides):
    values = dict(energy_max_dim=64, noise_min_res=16, noise_max_res=32)
    values.update(overrides)
    return RenderConfig(**values)


def test_config():
    """Defaults, NEON_MOSAIC_* overrides and validation."""
    print("Testing RenderConfig...")
    cfg = RenderConfig()
    assert cfg.activation_threshold == 3500 and cfg.headband_threshold == 1500
    assert cfg.crossfade_ms == 380 and cfg.energy_max_dim == 520
    assert cfg.energy_unlocked(3500) and not cfg.energy_unlocked(3499)
    assert cfg.headband_unlocked(1500) and not cfg.headband_unlocked(1499)

    override = Plan(10, 10, unlock_headband=True)
    assert cfg.headband_unlocked(0, override), "plan flag overrides population"

    env = {"NEON_MOSAIC_ACTIVATION_THRESHOLD": "5000", "UNRELATED": "x"}
    cfg = RenderConfig.from_env(env, crossfade_ms=0)
    assert cfg.activation_threshold == 5000, "env values are coerced"
    assert cfg.crossfade_ms == 0, "explicit overrides win"

    for bad in ({"NEON_MOSAIC_OUTLINE_THRESHOLD": "300"}, {"NEON_MOSAIC_ENERGY_MAX_DIM": "big"}):
        try:
            RenderConfig.from_env(bad)
        except ValidationError:
            pass
        else:
            raise AssertionError(f"{bad} should fail validation")
    try:
        RenderConfig(not_a_field=1)
    except ValidationError:
        pass
    else:
        raise AssertionError("unknown fields are rejected")
    print("  ✓ config correct")


def test_client_endpoints():
    """Endpoints, query parameters and image decoding."""
    print("Testing MosaicClient...")
    plan_json = {"width": 50, "height": 40, "items": [{"text": "Ada", "x": 5, "y": 6}]}
    http = FakeHTTP({
        ("GET", "/psyduck/stats"): FakeResponse(payload={"total": 1234}),
        ("GET", "/psyduck/slots"): FakeResponse(payload=plan_json),
        ("POST", "/psyduck/seed-fakes"): FakeResponse(payload={"ok": True}),
        ("GET", "/static/eyes.png"): FakeResponse(content=_png_bytes()),
    })
    client = MosaicClient(BASE + "/", session=http)

    assert client.get_stats() == {"total": 1234}
    plan = client.get_slots(1800)
    assert plan.size == (50, 40) and plan.items[0].text == "Ada"
    method, url, kwargs = http.calls[-1]
    assert url == BASE + "/psyduck/slots"
    assert kwargs["params"] == {"limit": 1800, "order": "oldest"}, kwargs

    client.seed_fakes(5)
    assert http.calls[-1][0] == "POST" and http.calls[-1][2]["json"] == {"count": 5}

    created = FakeHTTP({("POST", "/psyduck/seed-fakes"): FakeResponse(201, payload={"seeded": 5})})
    assert MosaicClient(BASE, session=created).seed_fakes(5) == {"seeded": 5}, \
        "any 2xx status is a success"

    img = client.load_image("static/eyes.png")
    assert img.size == (4, 4)
    assert client.url("https://cdn.example/x.png") == "https://cdn.example/x.png"
    print("  ✓ client endpoints correct")


def test_client_errors():
    """HTTP, transport and payload failures all surface as SourceError."""
    print("Testing MosaicClient errors...")
    cases = [
        (MosaicClient(BASE, session=FakeHTTP()), lambda c: c.get_stats()),
        (MosaicClient(BASE, session=FakeHTTP(error=requests.exceptions.ConnectionError("down"))),
         lambda c: c.get_masks()),
        (MosaicClient(BASE, session=FakeHTTP({("GET", "/psyduck/stats"): FakeResponse()})),
         lambda c: c.get_stats()),
        (MosaicClient(BASE, session=FakeHTTP({("GET", "/psyduck/slots"): FakeResponse(payload={"width": 0, "height": 1})})),
         lambda c: c.get_slots(10)),
        (MosaicClient(BASE, session=FakeHTTP({("GET", "/bad.png"): FakeResponse(content=b"nope")})),
         lambda c: c.load_image("/bad.png")),
    ]
    for i, (client, call) in enumerate(cases):
        try:
            call(client)
        except SourceError:
            pass
        else:
            raise AssertionError(f"case {i} should raise SourceError")
    print("  ✓ client errors mapped")


def test_plan_cache():
    """Fresh entries read back; stale, foreign or malformed entries miss."""
    print("Testing PlanCache...")
    now = [1_000_000.0]
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "nested", "plan.json")
        cache = PlanCache(path, key="k:v3", ttl_seconds=60, clock=lambda: now[0])
        assert cache.read() is None, "missing file is a miss"

        plan = make_demo_plan(*SIZE, count=5, population=77)
        assert cache.write(plan)
        cached = cache.read()
        assert cached == plan, "fresh entry reads back the same plan"

        with open(path) as f:
            entry = json.load(f)["k:v3"]
        assert entry["cachedAt"] == 1_000_000_000, "timestamp stored in ms"

        assert PlanCache(path, key="k:v4", clock=lambda: now[0]).read() is None, \
            "a different version key misses"

        now[0] += 61
        assert cache.read() is None, "entries older than the TTL are stale"

        with open(path, "w") as f:
            f.write("{not json")
        assert cache.read() is None, "malformed JSON is a miss"
    print("  ✓ plan cache correct")


def test_session_large_channel():
    """Preview at 1800 then full at the 3500 cap; full plan is cached."""
    print("Testing MosaicSession (large channel)...")
    with tempfile.TemporaryDirectory() as tmp:
        cache = PlanCache(os.path.join(tmp, "plan.json"))
        ctl = RenderController(_config())
        client = FakeClient(total=4000)
        session = MosaicSession(client, ctl, cache)
        assert session.run(), "session should succeed"

        assert session.limits(4000) == (3500, 1800)
        assert client.slots == [(1800, "oldest"), (3500, "oldest")], client.slots
        assert ctl.population == 4000
        assert not ctl.plan.is_preview and ctl.plan.subscriber_count == 4000
        assert cache.read() is not None, "full plan written to the cache"

        # preview was on screen, so the final crossfades in
        assert ctl.phase is Phase.FINAL
        ctl.tick(400)
        assert ctl.final_ready and ctl.phase is Phase.ENERGY
    print("  ✓ large channel session correct")


def test_session_small_channel():
    """Small channels promote the preview plan instead of fetching again."""
    print("Testing MosaicSession (small channel)...")
    ctl = RenderController(_config())
    client = FakeClient(total=500, fail=("headband", "pupils"))
    session = MosaicSession(client, ctl)
    assert session.run()
    assert client.slots == [(500, "oldest")], "no second fetch when everyone fits"
    assert not ctl.plan.is_preview, "preview plan promoted to final"
    assert ctl.images["pupils"] is None, "failed shapes resolve as absent"
    assert ctl.phase is Phase.FINAL

    empty = RenderController(_config())
    assert MosaicSession(FakeClient(total=0), empty).run()
    assert empty.plan is None and empty.phase is Phase.EMPTY, "no population, nothing to draw"
    print("  ✓ small channel session correct")


def test_session_cached_paint_and_failure():
    """Cached plans paint instantly; a stats failure is fatal."""
    print("Testing MosaicSession (cache + failure)...")
    with tempfile.TemporaryDirectory() as tmp:
        cache = PlanCache(os.path.join(tmp, "plan.json"))
        cache.write(make_demo_plan(*SIZE, count=20, population=900))

        ctl = RenderController(_config())
        ctl.set_shape_images(demo_images(SIZE))
        session = MosaicSession(FakeClient(total=900, stats_error="stats down"), ctl, cache)
        stages = session.stages()
        assert next(stages) == "cache"
        assert ctl.phase is Phase.FINAL and ctl.population == 900, "cached plan painted first"

        for _ in stages:
            pass
        assert ctl.phase is Phase.ERROR and ctl.error == "stats down"
        assert ctl.surface is None
    print("  ✓ cache paint and failure correct")


if __name__ == "__main__":
    print("\n=== Testing Data Source + Config ===\n")

    test_config()
    test_client_endpoints()
    test_client_errors()
    test_plan_cache()
    test_session_large_channel()
    test_session_small_channel()
    test_session_cached_paint_and_failure()

    print("\n✓ All tests passed!\n")
