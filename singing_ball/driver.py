import enum
import logging
from typing import Callable, Iterable, Optional

from .physics import PhysicsState
from .render import LabelEntity, Renderer
from .scheduler import FRAME_MS, Scheduler

log = logging.getLogger(__name__)


class DriverState(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    DRAGGING = "dragging"


class AnimationDriver:
    """Frame loop: update physics, draw, schedule the next tick.

    Dragging is its own state. Releasing the ball always lands in RUNNING,
    unless stop() was called while the drag was in progress.
    """

    def __init__(self, physics: PhysicsState, renderer: Renderer, scheduler: Scheduler,
                 labels: Callable[[], Iterable[LabelEntity]] = tuple, frame_ms: float = FRAME_MS):
        self.physics = physics
        self.renderer = renderer
        self.scheduler = scheduler
        self.labels = labels
        self.frame_ms = float(frame_ms)
        self.state = DriverState.STOPPED
        self.frames = 0
        self._handle = None
        self._start_time = scheduler.now()
        self._elapsed = 0.0
        self._resume_after_drag = False

    @property
    def elapsed(self) -> float:
        return self._elapsed

    def is_running(self) -> bool:
        return self.state is DriverState.RUNNING

    def is_dragging(self) -> bool:
        return self.state is DriverState.DRAGGING

    def restart_clock(self) -> None:
        self._start_time = self.scheduler.now()
        self._elapsed = 0.0

    def start(self) -> None:
        if self.state is DriverState.DRAGGING:
            self._resume_after_drag = True
            return
        if self.state is DriverState.RUNNING:
            return
        self._begin(immediate=True)

    def _begin(self, immediate: bool) -> None:
        # Resume from the paused offset rather than from zero
        self._start_time = self.scheduler.now() - self._elapsed
        self.state = DriverState.RUNNING
        log.debug("Animation started at %.2fs", self._elapsed)
        if immediate:
            self._tick()
        else:
            self._handle = self.scheduler.call_later(self.frame_ms, self._tick)

    def stop(self) -> None:
        if self.state is DriverState.DRAGGING:
            self._resume_after_drag = False
            return
        if self.state is not DriverState.RUNNING:
            return
        self.state = DriverState.STOPPED
        self._cancel_pending()
        log.debug("Animation stopped at %.2fs", self._elapsed)

    def redraw(self) -> None:
        self.renderer.draw(self.physics, self.labels(), self._elapsed)

    def _cancel_pending(self) -> None:
        if self._handle is not None:
            self.scheduler.cancel(self._handle)
            self._handle = None

    def _tick(self) -> None:
        self._handle = None
        if self.state is not DriverState.RUNNING:
            return
        self._elapsed = self.scheduler.now() - self._start_time
        try:
            self.physics.update()
            self.renderer.draw(self.physics, self.labels(), self._elapsed)
        except Exception:
            # No tick is pending anymore; drop to STOPPED so start() can revive the loop
            self.state = DriverState.STOPPED
            log.exception("Frame %d failed; animation stopped", self.frames)
            raise
        self.frames += 1
        # A collision listener may have stopped the loop mid-tick
        if self.state is DriverState.RUNNING:
            self._handle = self.scheduler.call_later(self.frame_ms, self._tick)

    def handle_pointer_down(self, x: float, y: float) -> bool:
        if self.state is DriverState.DRAGGING or not self.physics.contains_point(x, y):
            return False
        self._cancel_pending()
        self.state = DriverState.DRAGGING
        self._resume_after_drag = True
        return True

    def handle_pointer_move(self, x: float, y: float) -> bool:
        if self.state is not DriverState.DRAGGING:
            return False
        self.physics.drag_to(x, y)
        self.redraw()
        return True

    def handle_pointer_up(self) -> bool:
        if self.state is not DriverState.DRAGGING:
            return False
        self.state = DriverState.STOPPED
        if self._resume_after_drag:
            # First tick one frame later; the drop position is drawn as-is until then
            self._begin(immediate=False)
        return True
