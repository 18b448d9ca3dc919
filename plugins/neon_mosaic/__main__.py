"""
Neon Mosaic Viewer - Entry Point

Usage:
    python -m neon_mosaic [--demo N] [--api URL] [--window WxH]
                          [--reduced-motion] [--find NAME] [--snap PATH]

Examples:
    python -m neon_mosaic
    python -m neon_mosaic --demo 800
    python -m neon_mosaic --api http://127.0.0.1:8000 --window 900x1000
    python -m neon_mosaic --demo 4000 --snap mosaic.png

--snap renders headless (no pygame): it runs the render loop for a few
seconds of simulated time and saves the visible surface as a PNG.
"""

import logging
import sys

from .config import RenderConfig


def snap(path, source, population, width, height, reduced_motion, config, frames=24):
    """Headless mode: run the controller for `frames` ticks, save PNG, exit."""
    from .controller import RenderController
    from .demo import demo_images, make_demo_plan
    from .source import MosaicClient, MosaicSession, PlanCache

    ctl = RenderController(config, reduced_motion=reduced_motion)
    ctl.resize(width, height)

    if source == "api":
        client = MosaicClient(config.api_base, config.request_timeout)
        cache = PlanCache(config.cache_path, config.cache_key, config.cache_ttl_seconds)
        if not MosaicSession(client, ctl, cache).run():
            print(f"Session failed: {ctl.error}")
            return 1
    else:
        ctl.set_population(population)
        ctl.set_shape_images(demo_images())
        count = min(population, config.activation_threshold)
        ctl.set_full_plan(make_demo_plan(count=count, population=population))

    print(f"  rendering {frames} frames...", end="", flush=True)
    for i in range(frames):
        ctl.tick((i + 1) * 1000.0 / 30)

    img = ctl.surface
    if img is None:
        print(" nothing rendered")
        return 1
    img.save(path)
    print(f" saved: {path} (phase {ctl.phase.value})")
    return 0


def main():
    source = "demo"
    population = 4000
    win_w, win_h = 700, 800
    reduced_motion = False
    snap_path = None
    find = None
    overrides = {}

    args = sys.argv[1:]
    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--demo" and i + 1 < len(args):
            source = "demo"
            population = int(args[i + 1])
            i += 2
        elif arg == "--api" and i + 1 < len(args):
            source = "api"
            overrides["api_base"] = args[i + 1]
            i += 2
        elif arg == "--window" and i + 1 < len(args):
            parts = args[i + 1].split("x")
            win_w, win_h = int(parts[0]), int(parts[1])
            i += 2
        elif arg == "--snap" and i + 1 < len(args):
            snap_path = args[i + 1]
            i += 2
        elif arg == "--find" and i + 1 < len(args):
            find = args[i + 1]
            i += 2
        elif arg == "--reduced-motion":
            reduced_motion = True
            i += 1
        elif arg in ("--verbose", "-v"):
            logging.getLogger().setLevel(logging.DEBUG)
            i += 1
        elif arg in ("--help", "-h"):
            print(__doc__)
            return 0
        else:
            print(f"Unknown argument: {arg}")
            print("Use --help for usage")
            return 2

    config = RenderConfig.from_env(**overrides)

    if snap_path:
        print(f"Headless snap mode: {source} @ {win_w}x{win_h}")
        return snap(snap_path, source, population, win_w, win_h, reduced_motion, config)

    from .viewer import Viewer

    print("Starting Neon Mosaic Viewer")
    print(f"  Source: {source}" + (f" ({config.api_base})" if source == "api" else f" (population {population})"))
    print(f"  Window: {win_w}x{win_h}")
    print()

    viewer = Viewer(
        width=win_w,
        height=win_h,
        source=source,
        population=population,
        reduced_motion=reduced_motion,
        find=find,
        config=config,
    )
    viewer.run()
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    sys.exit(main())
