"""
Render Phase Controller

Owns everything one mosaic session renders: the active plan, the shape
images, the derived RegionSet, the preview/final frame buffers, the energy
renderer and the three animation loops (preview batches, crossfade, energy).

    EMPTY -> PREVIEW -> FINAL -> ENERGY          (ERROR from anywhere)

Transitions are driven only by inputs (plans, shape images, population,
failure); the crossfade is the one timed sub-state. Work happens
synchronously inside input calls or scheduler frames, never in threads.

Usage:
    ctl = RenderController(RenderConfig())
    ctl.set_population(4000)
    ctl.set_shape_images(images)
    ctl.set_full_plan(plan)
    ctl.tick(now_ms)          # once per displayed frame
    img = ctl.surface         # PIL image at the viewport size
"""

import enum
import logging

from .buffers import FrameBuffer
from .compositor import PreviewCompositor, build_final_frame, detail_alpha
from .config import RenderConfig
from .energy import EnergyRenderer
from .masks import dilate, to_alpha_mask
from .regions import RegionSet, SHAPE_NAMES, required_shapes
from .scheduler import AnimationLoop, FrameScheduler

logger = logging.getLogger(__name__)


class Phase(str, enum.Enum):
    EMPTY = "empty"
    PREVIEW = "preview"
    FINAL = "final"
    ENERGY = "energy"
    ERROR = "error"


def crossfade(src, dst, t):
    """Blend two frames with quadratic ease: out (1-t)^2, in t^2."""
    t = max(0.0, min(1.0, t))
    if src.size != dst.size:
        src = src.resized(*dst.size)
    out = FrameBuffer(*dst.size)
    out.over(src.rgba, (1.0 - t) ** 2)
    out.over(dst.rgba, t * t)
    return out


class RenderController:
    """Phase state machine for one mosaic session."""

    def __init__(self, config=None, scheduler=None, reduced_motion=False):
        self.config = config or RenderConfig()
        self.scheduler = scheduler or FrameScheduler()
        self.reduced_motion = bool(reduced_motion)

        self.phase = Phase.EMPTY
        self.plan = None
        self.population = 0
        self.error = None

        # name -> PIL image, or None when the image failed to load
        self.images = {}
        self._images_version = 0

        self.regions = None
        self._regions_key = None
        self._energy_outline = None

        self.preview_buffer = None
        self.final_buffer = None
        self.frame = None
        self.viewport = None
        self._surface = None

        self._preview = None
        self._preview_outline_src = None
        self._final_plan = None
        self._final_key = None
        self._final_shown = False
        self._fade_from = None
        self._fade_start = 0.0

        self.energy = EnergyRenderer(
            max_dim=self.config.energy_max_dim,
            noise_min_res=self.config.noise_min_res,
            noise_max_res=self.config.noise_max_res,
        )

        self._preview_loop = AnimationLoop(self.scheduler, self._preview_step, "preview")
        self._fade_loop = AnimationLoop(self.scheduler, self._fade_step, "crossfade")
        self._energy_loop = AnimationLoop(self.scheduler, self._energy_step, "energy")

        # Diagnostics
        self.preview_frames = 0
        self.fade_frames = 0
        self.energy_frames = 0
        self.final_builds = 0
        self.blits = 0

    # ------------------------------------------------------------------
    # Exposed state
    # ------------------------------------------------------------------

    @property
    def preview_ready(self):
        return self.preview_buffer is not None

    @property
    def final_ready(self):
        """True once the final buffer is fully on screen (crossfade done)."""
        return self._final_shown and self.final_buffer is not None

    @property
    def energy_active(self):
        return self.phase is Phase.ENERGY

    @property
    def surface(self):
        """Visible surface: the current frame at the viewport size (PIL RGBA)."""
        if self.frame is None:
            return None
        if self._surface is None:
            fb = self.frame
            if self.viewport is not None and self.viewport != fb.size:
                fb = fb.resized(*self.viewport)
            self._surface = fb.to_image()
        return self._surface

    @property
    def loops_active(self):
        return {
            "preview": self._preview_loop.active,
            "crossfade": self._fade_loop.active,
            "energy": self._energy_loop.active,
        }

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def tick(self, now_ms):
        """Drive one display frame."""
        return self.scheduler.run_frame(now_ms)

    def resize(self, width, height):
        """Viewport changed: re-blit the current buffer, no recomposition."""
        self.viewport = (max(1, int(width)), max(1, int(height)))
        self._surface = None
        return self.surface

    def set_reduced_motion(self, reduced):
        if bool(reduced) == self.reduced_motion:
            return
        self.reduced_motion = bool(reduced)
        if self.phase is Phase.ENERGY:
            self._start_energy()

    def set_population(self, population):
        population = max(0, int(population))
        if population == self.population:
            return
        self.population = population
        logger.debug("Population -> %d", population)
        self._update()

    def set_preview_plan(self, plan):
        """A low-fidelity preview layout arrived."""
        if self._halted():
            return
        if self.plan is not None and not self.plan.is_preview:
            logger.debug("Ignoring preview plan: a full plan is already active")
            return
        if not plan.is_preview:
            plan = plan.with_population(plan.subscriber_count, is_preview=True)
        logger.info("Preview plan: %dx%d, %d tiles", plan.width, plan.height, len(plan.items))
        self.plan = plan
        self._preview = None
        self._update()

    def set_full_plan(self, plan):
        """The full layout arrived (supersedes any preview)."""
        if self._halted():
            return
        if plan.is_preview:
            plan = plan.promoted()
        logger.info("Full plan: %dx%d, %d tiles", plan.width, plan.height, len(plan.items))
        if self.plan is not None and not self.plan.is_preview:
            # plan swapped out under a running final/energy phase
            self._energy_loop.cancel()
        self.plan = plan
        self._update()

    def promote_preview(self):
        """Promote the active preview plan to full (small channels)."""
        if self.plan is not None and self.plan.is_preview:
            self.set_full_plan(self.plan.promoted())

    def set_shape_image(self, name, image):
        """Provide one shape image; None marks it as failed (feature absent)."""
        self.set_shape_images({name: image})

    def set_shape_images(self, images):
        if self._halted():
            return
        changed = False
        for name, image in images.items():
            if name not in SHAPE_NAMES:
                raise KeyError(f"Unknown shape {name!r}; expected one of {SHAPE_NAMES}")
            if image is None:
                logger.warning("Shape %r unavailable; treating it as absent", name)
            if name in self.images and self.images[name] is image:
                continue
            self.images[name] = image
            changed = True
        if not changed:
            return
        self._images_version += 1
        self._regions_key = None
        if self.phase is Phase.ENERGY:
            # masks swapped out under the energy loop
            self._energy_loop.cancel()
        self._update()

    def fail(self, message):
        """Fatal source failure: halt every loop and clear the scene."""
        logger.error("Render session failed: %s", message)
        self.cancel_all()
        self.error = str(message)
        self.phase = Phase.ERROR
        self.frame = None
        self._surface = None

    def cancel_all(self):
        self._preview_loop.cancel()
        self._fade_loop.cancel()
        self._energy_loop.cancel()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _halted(self):
        return self.phase is Phase.ERROR

    def _set_phase(self, phase):
        if phase is not self.phase:
            logger.debug("Phase %s -> %s", self.phase.value, phase.value)
            self.phase = phase

    def _update(self):
        if self._halted() or self.plan is None:
            return
        if self.plan.is_preview:
            self._update_preview()
        else:
            self._update_final()

    def _masks_resolved(self, headband):
        needed = required_shapes(headband) + ["outline"]
        return all(name in self.images for name in needed)

    def _headband_requested(self):
        return self.config.headband_unlocked(self.population, self.plan)

    # -- preview --------------------------------------------------------

    def _update_preview(self):
        if self.images.get("silhouette") is None:
            return
        plan = self.plan
        w, h = plan.size
        outline_src = self.images.get("outline")
        if self._preview is not None and self._preview.plan is plan:
            if outline_src is self._preview_outline_src:
                return
            # outline arrived (or changed) mid-preview: redraw, even if every batch is done
            self._preview_outline_src = outline_src
            self._preview.outline = self._outline_mask(w, h)
            if not self._preview_loop.active:
                self._preview_loop.start(now_ms=self.scheduler.now_ms)
            return
        outline = self._outline_mask(w, h)
        self._preview_outline_src = outline_src
        silhouette = to_alpha_mask(self.images["silhouette"], w, h)
        self._preview = PreviewCompositor(
            plan, silhouette, outline,
            draw_max=self.config.preview_draw_max,
            min_batch=self.config.preview_min_batch,
        )
        self._set_phase(Phase.PREVIEW)
        self._preview_loop.start(now_ms=self.scheduler.now_ms)

    def _outline_mask(self, w, h):
        img = self.images.get("outline")
        if img is None:
            return None
        mask = to_alpha_mask(img, w, h, self.config.outline_threshold)
        return None if mask.is_empty else mask

    def _preview_step(self, now_ms):
        preview = self._preview
        if self.phase is not Phase.PREVIEW or preview is None or preview.plan is not self.plan:
            return False
        self.preview_buffer = preview.step()
        self.preview_frames += 1
        self._blit(self.preview_buffer)
        return not preview.done

    # -- final ----------------------------------------------------------

    def _regions_for(self, plan, headband):
        key = (plan.size, headband, self._images_version)
        if self._regions_key != key:
            w, h = plan.size
            self.regions = RegionSet.build(
                self.images, w, h, headband_active=headband,
                outline_threshold=self.config.outline_threshold,
            )
            outline = self.regions.outline
            self._energy_outline = dilate(outline, 2) if outline is not None else None
            self._regions_key = key
        return self.regions

    def _update_final(self):
        plan = self.plan
        headband = self._headband_requested()
        if not self._masks_resolved(headband):
            logger.debug("Final render waiting for shape images")
            return

        regions = self._regions_for(plan, headband)
        energy_unlocked = self.config.energy_unlocked(self.population)
        key = (id(plan), self._regions_key, energy_unlocked,
               detail_alpha(self.population, self.config.detail_full_population))
        if key == self._final_key and self.final_buffer is not None:
            self._maybe_start_energy()
            return

        self._preview_loop.cancel()
        self._fade_loop.cancel()
        self._energy_loop.cancel()

        final = build_final_frame(
            plan, regions, self.population,
            energy_active=energy_unlocked,
            detail_full_population=self.config.detail_full_population,
        )
        self.final_builds += 1
        logger.info("Final composite built (%dx%d, energy=%s, headband=%s)",
                    plan.width, plan.height, energy_unlocked, regions.headband_active)

        self.final_buffer = final
        self._final_plan = plan
        self._final_key = key
        self._final_shown = False
        self._set_phase(Phase.FINAL)

        if self.preview_buffer is None:
            self._blit(final)
            self._on_final_shown()
            return
        self._fade_from = self.preview_buffer
        self._fade_start = self.scheduler.now_ms
        self._fade_loop.start(now_ms=self.scheduler.now_ms)

    def _fade_step(self, now_ms):
        if self.final_buffer is None or self._fade_from is None:
            return False
        duration = self.config.crossfade_ms
        t = 1.0 if duration <= 0 else min(1.0, (now_ms - self._fade_start) / duration)
        self.fade_frames += 1
        if t >= 1.0:
            self._blit(self.final_buffer)
            self._on_final_shown()
            return False
        self._blit(crossfade(self._fade_from, self.final_buffer, t))
        return True

    def _on_final_shown(self):
        self._final_shown = True
        self._fade_from = None
        # preview is no longer needed once the final is fully visible
        self.preview_buffer = None
        self._preview = None
        self._maybe_start_energy()

    # -- energy ---------------------------------------------------------

    def _maybe_start_energy(self):
        if not self.final_ready or self.plan is not self._final_plan:
            return
        if not self.config.energy_unlocked(self.population) or self._energy_outline is None:
            if self.phase is Phase.ENERGY:
                self._energy_loop.cancel()
                self._set_phase(Phase.FINAL)
                self._blit(self.final_buffer)
            return
        if self.phase is Phase.ENERGY and (self._energy_loop.active or self.reduced_motion):
            return
        self._start_energy()

    def _start_energy(self):
        w, h = self.plan.size
        self.energy.prepare(w, h, self._energy_outline)
        self._set_phase(Phase.ENERGY)
        logger.info("Energy phase active (reduced_motion=%s)", self.reduced_motion)
        if self.reduced_motion:
            self._energy_loop.cancel()
            self._energy_step(self.scheduler.now_ms)
        else:
            self._energy_loop.start()

    def _energy_step(self, now_ms):
        if self.phase is not Phase.ENERGY or self.final_buffer is None:
            return False
        frame = self.energy.render(self.final_buffer, now_ms / 1000.0)
        self.energy_frames += 1
        self._blit(frame)
        return not self.reduced_motion

    # ------------------------------------------------------------------

    def _blit(self, frame):
        self.frame = frame
        self._surface = None
        self.blits += 1
