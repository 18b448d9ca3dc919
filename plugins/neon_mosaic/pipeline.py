"""
Neon Mosaic Video Source Pipeline

Text-only pipeline that plays the mosaic renderer as a video source: each
call advances the render controller by one frame and returns the visible
surface as a tensor. No video input needed.

Sources:
  demo  synthetic shapes and a seeded plan (offline)
  api   the mosaic HTTP API via MosaicSession, one fetch stage per call
"""

import enum
import logging

import numpy as np
import torch

from .config import RenderConfig
from .controller import RenderController
from .demo import demo_images, make_demo_plan
from .source import MosaicClient, MosaicSession, PlanCache

logger = logging.getLogger(__name__)


class SourceEnum(str, enum.Enum):
    demo = "demo"
    api = "api"


class MosaicPipeline:
    """Mosaic renderer exposed as a frame-per-call video pipeline."""

    def __init__(self, width: int = 600, height: int = 700, source: str = "demo",
                 population: int = 4000, fps: float = 30.0, config=None, **kwargs):
        """
        Args:
            width, height: Output frame size (the controller viewport)
            source: "demo" or "api"
            population: Demo population (ignored for the api source)
            fps: Frame clock rate used to advance animation time
            config: RenderConfig; defaults come from NEON_MOSAIC_* variables
        """
        self.config = config or RenderConfig.from_env()
        self.width = int(width)
        self.height = int(height)
        self.frame_ms = 1000.0 / max(1.0, float(fps))
        self.now_ms = 0.0
        self.source = getattr(source, "value", source)

        self.controller = RenderController(self.config)
        self.controller.resize(self.width, self.height)
        self._stages = None

        if self.source == SourceEnum.api.value:
            client = MosaicClient(self.config.api_base, self.config.request_timeout)
            cache = PlanCache(self.config.cache_path, self.config.cache_key,
                              self.config.cache_ttl_seconds)
            self.session = MosaicSession(client, self.controller, cache)
            self._stages = self.session.stages()
        elif self.source == SourceEnum.demo.value:
            self.session = None
            self._load_demo(int(population))
        else:
            raise ValueError(f"Unknown source {source!r}; expected 'demo' or 'api'")

    def _load_demo(self, population):
        ctl = self.controller
        count = min(population, self.config.activation_threshold)
        ctl.set_population(population)
        ctl.set_shape_images(demo_images())
        ctl.set_full_plan(make_demo_plan(count=count, population=population))

    def _advance_session(self):
        if self._stages is None:
            return
        try:
            stage = next(self._stages)
            logger.debug("Session stage: %s", stage)
        except StopIteration:
            self._stages = None

    def __call__(self, prompt: str = "", **kwargs) -> dict:
        """Render the next frame.

        Args:
            prompt: Ignored (text-only pipeline)
            **kwargs: Runtime parameters:
                population (int): Override the population count
                reduced_motion (bool): Freeze the energy animation

        Returns:
            {"video": tensor} where tensor is (1, H, W, 3) float32 [0,1]
        """
        ctl = self.controller
        if "reduced_motion" in kwargs and bool(kwargs["reduced_motion"]) != ctl.reduced_motion:
            ctl.set_reduced_motion(kwargs["reduced_motion"])
        if kwargs.get("population") is not None:
            ctl.set_population(kwargs["population"])

        self._advance_session()
        self.now_ms += self.frame_ms
        ctl.tick(self.now_ms)

        surface = ctl.surface
        if surface is None:
            # nothing painted yet (or the session failed): black frame
            frame_np = np.zeros((self.height, self.width, 3), dtype=np.float32)
        else:
            rgba = np.asarray(surface, dtype=np.float32) / 255.0
            # composite onto black
            frame_np = rgba[:, :, :3] * rgba[:, :, 3:4]

        tensor = torch.from_numpy(np.ascontiguousarray(frame_np)).unsqueeze(0)
        return {"video": tensor}
