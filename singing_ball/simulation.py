import logging
import random
from dataclasses import replace
from typing import Callable, Iterable, List, Optional

import numpy as np

from .audio import AudioStream, AudioTrack
from .capture import CaptureArtifact, CaptureSession
from .config import CaptureConfig, SimulationConfig, TuningParameters
from .driver import AnimationDriver
from .physics import PhysicsState
from .render import LabelEntity, Renderer, SurfaceError, check_labels, label_contains
from .scheduler import Scheduler, SimulatedScheduler

log = logging.getLogger(__name__)


def new_surface(width: int, height: int) -> np.ndarray:
    return np.zeros((int(height), int(width), 3), dtype=np.uint8)


class CircleSimulation:
    """One ball-in-a-ring simulation bound to one raster surface.

    Owns the physics, renderer, frame loop and capture session. UI code talks
    to this object only: setters for tuning, start/stop/reset, pointer
    handlers, recording and the audio destination for external mixers.
    """

    def __init__(self, surface: np.ndarray, labels: Iterable[LabelEntity] = (),
                 on_collision: Optional[Callable[[], None]] = None,
                 scheduler: Optional[Scheduler] = None,
                 config: Optional[SimulationConfig] = None,
                 tuning: Optional[TuningParameters] = None,
                 capture_config: Optional[CaptureConfig] = None,
                 rng: Optional[random.Random] = None):
        self.scheduler = scheduler or SimulatedScheduler()
        self.config = config or SimulationConfig()
        self.tuning = tuning or TuningParameters()
        self.renderer = Renderer(surface, self.config, rng)
        w, h = self.renderer.size
        try:
            self.physics = PhysicsState(w, h, self.tuning, self.config)
        except ValueError as e:
            raise SurfaceError(str(e)) from e
        capture_config = capture_config or CaptureConfig()
        self.audio_destination = AudioTrack(capture_config.sample_rate, clock=self.scheduler.now)
        self._labels: List[LabelEntity] = check_labels(labels)
        self._dragged_labels: List[str] = []
        self._on_collision = on_collision
        self.physics.add_collision_listener(self._collided)
        self.driver = AnimationDriver(self.physics, self.renderer, self.scheduler, labels=self.get_labels,
                                      frame_ms=1000.0 / self.config.frame_rate)
        self.capture = CaptureSession(self.renderer, self.scheduler, capture_config)
        self.collisions = 0
        self.reset()

    def _collided(self) -> None:
        self.collisions += 1
        if self._on_collision is not None:
            self._on_collision()

    def set_collision_callback(self, callback: Optional[Callable[[], None]]) -> None:
        self._on_collision = callback

    def get_labels(self) -> List[LabelEntity]:
        return self._labels

    def update_labels(self, labels: Iterable[LabelEntity]) -> None:
        """Replace every label at once. Raises ValueError, leaving the old labels, if one is unpaintable."""
        self._labels = check_labels(labels)

    def label_at(self, x: float, y: float) -> Optional[LabelEntity]:
        for label in reversed(self._labels):
            if label_contains(label, x, y):
                return label
        return None

    def move_label(self, label_id: str, x: float, y: float) -> None:
        self._labels = [replace(lb, x=float(x), y=float(y)) if lb.id == label_id else lb for lb in self._labels]

    def reset(self) -> None:
        self.physics.reset()
        self.renderer.reroll_color()
        self.driver.restart_clock()
        self.collisions = 0

    def start(self) -> None:
        self.driver.start()

    def stop(self) -> None:
        self.driver.stop()

    def is_running(self) -> bool:
        return self.driver.is_running()

    @property
    def elapsed(self) -> float:
        return self.driver.elapsed

    def redraw(self) -> None:
        self.driver.redraw()

    def set_gravity(self, value: float) -> None:
        self.tuning.set_gravity(value)

    def set_velocity_increase(self, rate: float) -> None:
        self.tuning.set_velocity_increase(rate)

    def set_velocity_decay(self, value: float) -> None:
        self.tuning.set_velocity_decay(value)

    def set_ball_growth_rate(self, rate: float) -> None:
        self.tuning.set_growth_rate(rate)

    def start_recording(self, on_complete: Optional[Callable[[CaptureArtifact], None]] = None,
                        audio_stream: Optional[AudioStream] = None) -> bool:
        return self.capture.start(on_complete, audio_stream)

    def stop_recording(self) -> bool:
        return self.capture.stop()

    def is_recording(self) -> bool:
        return self.capture.is_active

    def get_audio_destination(self) -> AudioTrack:
        return self.audio_destination

    def is_dragging(self) -> bool:
        return self.driver.is_dragging() or bool(self._dragged_labels)

    def handle_pointer_down(self, x: float, y: float) -> bool:
        """Grab the ball and/or the topmost label under the pointer."""
        grabbed_ball = self.driver.handle_pointer_down(x, y)
        label = self.label_at(x, y)
        self._dragged_labels = [label.id] if label is not None else []
        return grabbed_ball or label is not None

    def handle_pointer_move(self, x: float, y: float) -> bool:
        for label_id in self._dragged_labels:
            self.move_label(label_id, x, y)
        moved_ball = self.driver.handle_pointer_move(x, y)
        if self._dragged_labels and not moved_ball and not self.driver.is_running():
            self.redraw()
        return moved_ball or bool(self._dragged_labels)

    def handle_pointer_up(self) -> bool:
        had_labels = bool(self._dragged_labels)
        self._dragged_labels = []
        return self.driver.handle_pointer_up() or had_labels
