"""
Cooperative Frame Scheduler

Single-threaded model of a display-synchronized animation callback. Callers
request a callback for the next frame; the host (viewer window, video
pipeline, tests) drives `run_frame(now_ms)` once per displayed frame.
Callbacks requested while a frame is running land on the following frame.

AnimationLoop wraps a step function into a cancellable recurring loop.
"""

import itertools
import logging

logger = logging.getLogger(__name__)


class FrameScheduler:
    """Per-frame callback queue with request/cancel handles."""

    def __init__(self):
        self._pending = {}
        self._running = {}
        self._ids = itertools.count(1)
        self.frame = 0
        self.now_ms = 0.0

    def request(self, callback):
        """Run `callback(now_ms)` on the next frame. Returns a cancel handle."""
        handle = next(self._ids)
        self._pending[handle] = callback
        return handle

    def cancel(self, handle):
        if handle is None:
            return
        self._pending.pop(handle, None)
        self._running.pop(handle, None)

    @property
    def pending(self):
        return len(self._pending)

    def run_frame(self, now_ms):
        """Invoke every callback requested before this frame started."""
        self.now_ms = float(now_ms)
        self.frame += 1
        self._running, self._pending = self._pending, {}
        while self._running:
            handle = next(iter(self._running))
            callback = self._running.pop(handle)
            callback(self.now_ms)
        return self.frame


class AnimationLoop:
    """Recurring callback loop; `step(now_ms)` returns True to keep going."""

    def __init__(self, scheduler, step, name="loop"):
        self.scheduler = scheduler
        self.step = step
        self.name = name
        self.handle = None
        self.ticks = 0
        self._generation = 0

    @property
    def active(self):
        return self.handle is not None

    def start(self, now_ms=None):
        """(Re)start the loop. With `now_ms`, the first step runs immediately."""
        self.cancel()
        if now_ms is None:
            self.handle = self.scheduler.request(self._tick)
        else:
            self._tick(now_ms)
        return self

    def cancel(self):
        self._generation += 1
        if self.handle is not None:
            logger.debug("Cancelling %s loop", self.name)
            self.scheduler.cancel(self.handle)
            self.handle = None

    def _tick(self, now_ms):
        self.handle = None
        generation = self._generation
        self.ticks += 1
        # a step that cancels its own loop must not be rescheduled
        if self.step(now_ms) and generation == self._generation:
            self.handle = self.scheduler.request(self._tick)
