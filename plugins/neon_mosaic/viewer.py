"""
Neon Mosaic Viewer

Pygame window that plays the role of the UI shell: it drives the render
controller at 60 Hz, re-blits on resize and overlays a small HUD.

Keys:
    Q / ESC   quit
    S         save screenshot
    H         toggle HUD
    M         toggle reduced motion
    + / -     population +/- 500 (demo source)
"""

import os
import time

import numpy as np
import pygame

from .config import RenderConfig
from .controller import RenderController
from .demo import demo_images, make_demo_plan
from .plan import search_tiles
from .source import MosaicClient, MosaicSession, PlanCache

BG = (6, 8, 14)
HUD_FG = (180, 190, 210)
HIT_RING = (255, 230, 90)


class Viewer:
    """Interactive window around a RenderController."""

    def __init__(self, width=700, height=800, source="demo", population=4000,
                 reduced_motion=False, find=None, config=None):
        self.config = config or RenderConfig.from_env()
        self.width = width
        self.height = height
        self.source = source
        self.population = population
        self.find = find
        self.running = True
        self.show_hud = True
        self.fps_history = []

        self.controller = RenderController(self.config, reduced_motion=reduced_motion)
        self.controller.resize(width, height)
        self._stages = None
        if source == "api":
            client = MosaicClient(self.config.api_base, self.config.request_timeout)
            cache = PlanCache(self.config.cache_path, self.config.cache_key,
                              self.config.cache_ttl_seconds)
            self._stages = MosaicSession(client, self.controller, cache).stages()
        else:
            self._load_demo()

    def _load_demo(self):
        ctl = self.controller
        ctl.set_population(self.population)
        ctl.set_shape_images(demo_images())
        count = min(self.population, self.config.activation_threshold)
        ctl.set_full_plan(make_demo_plan(count=count, population=self.population))

    def _set_demo_population(self, population):
        self.population = max(0, population)
        if self.source == "demo":
            self.controller.set_population(self.population)

    def _advance_session(self):
        if self._stages is None:
            return
        try:
            next(self._stages)
        except StopIteration:
            self._stages = None

    def _frame_surface(self):
        img = self.controller.surface
        if img is None:
            return None
        rgba = np.asarray(img)
        surface = pygame.image.frombuffer(rgba.tobytes(), img.size, "RGBA")
        return surface.convert_alpha() if pygame.display.get_surface() else surface

    def _draw_hits(self, screen):
        ctl = self.controller
        if not self.find or ctl.plan is None:
            return
        sx = self.width / ctl.plan.width
        sy = self.height / ctl.plan.height
        for it in search_tiles(ctl.plan, self.find):
            pos = (int(it.x * sx), int(it.y * sy))
            pygame.draw.circle(screen, HIT_RING, pos, max(6, int(it.font_px * sx)), 2)

    def _draw_hud(self, screen, fps):
        if not self.show_hud:
            return
        ctl = self.controller
        lines = [
            f"{fps:5.1f} fps  phase {ctl.phase.value}",
            f"population {ctl.population}  tiles {len(ctl.plan.items) if ctl.plan else 0}",
            f"reduced motion {'on' if ctl.reduced_motion else 'off'}",
        ]
        if ctl.error:
            lines.append(f"error: {ctl.error}")
        y = 8
        for line in lines:
            screen.blit(self.hud_font.render(line, True, HUD_FG), (10, y))
            y += 16

    def _save_screenshot(self):
        screenshots_dir = os.path.join(os.getcwd(), "screenshots")
        os.makedirs(screenshots_dir, exist_ok=True)
        timestamp = time.strftime("%Y%m%d_%H%M%S")
        path = os.path.join(screenshots_dir, f"mosaic_{timestamp}.png")
        img = self.controller.surface
        if img is None:
            print("Nothing rendered yet")
            return
        img.save(path)
        img.save(os.path.join(screenshots_dir, "latest.png"))
        print(f"Screenshot saved: {path}")

    def _handle_keydown(self, event):
        key = event.key
        if key in (pygame.K_q, pygame.K_ESCAPE):
            self.running = False
        elif key == pygame.K_s:
            self._save_screenshot()
        elif key == pygame.K_h:
            self.show_hud = not self.show_hud
        elif key == pygame.K_m:
            self.controller.set_reduced_motion(not self.controller.reduced_motion)
        elif key in (pygame.K_PLUS, pygame.K_EQUALS, pygame.K_KP_PLUS):
            self._set_demo_population(self.population + 500)
        elif key in (pygame.K_MINUS, pygame.K_KP_MINUS):
            self._set_demo_population(self.population - 500)

    def run(self):
        """Main viewer loop."""
        pygame.init()
        screen = pygame.display.set_mode((self.width, self.height), pygame.RESIZABLE)
        pygame.display.set_caption("Neon Mosaic")
        clock = pygame.time.Clock()
        self.hud_font = pygame.font.SysFont("menlo", 13)
        start = time.time()

        while self.running:
            frame_start = time.time()
            for event in pygame.event.get():
                if event.type == pygame.QUIT:
                    self.running = False
                elif event.type == pygame.KEYDOWN:
                    self._handle_keydown(event)
                elif event.type == pygame.VIDEORESIZE:
                    self.width, self.height = max(1, event.w), max(1, event.h)
                    self.controller.resize(self.width, self.height)

            self._advance_session()
            self.controller.tick((time.time() - start) * 1000.0)

            screen.fill(BG)
            surface = self._frame_surface()
            if surface is not None:
                screen.blit(surface, (0, 0))
            self._draw_hits(screen)

            self.fps_history.append(time.time() - frame_start)
            if len(self.fps_history) > 30:
                self.fps_history.pop(0)
            self._draw_hud(screen, 1.0 / max(np.mean(self.fps_history), 0.001))

            pygame.display.flip()
            clock.tick(60)

        self.controller.cancel_all()
        pygame.quit()
