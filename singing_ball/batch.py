import logging
from typing import Callable, List, Optional

from .capture import CaptureArtifact
from .simulation import CircleSimulation

log = logging.getLogger(__name__)


class BatchError(RuntimeError):
    pass


class BatchCancelled(BatchError):
    pass


class BatchRecorder:
    """Runs N reset -> record -> wait -> stop cycles on the simulation's scheduler.

    Waits are scheduler timers, so the frame loop keeps painting (and the
    capture keeps receiving frames) between steps. Any failure ends batch mode
    and throws away whatever was collected so far.
    """

    def __init__(self, simulation: CircleSimulation, audio=None, pause: float = 1.0):
        self.simulation = simulation
        self.scheduler = simulation.scheduler
        # Anything with reset() and get_audio_stream(), e.g. audio.BounceVoice
        self.audio = audio
        self.pause = float(pause)
        self.active = False
        self.count = 0
        self.duration = 0.0
        self.completed = 0
        self.artifacts: List[CaptureArtifact] = []
        self._batch_id = 0
        self._handle = None
        self._on_finished: Optional[Callable[[List[CaptureArtifact]], None]] = None
        self._on_error: Optional[Callable[[BaseException], None]] = None
        self._on_progress: Optional[Callable[[int, int], None]] = None

    def start(self, count: int, duration: float, on_finished: Callable[[List[CaptureArtifact]], None],
              on_error: Optional[Callable[[BaseException], None]] = None,
              on_progress: Optional[Callable[[int, int], None]] = None) -> bool:
        if self.active:
            log.warning("Batch already running; start ignored")
            return False
        if int(count) < 1:
            raise ValueError("Batch count must be at least 1")
        if float(duration) <= 0:
            raise ValueError("Recording duration must be positive")
        self._batch_id += 1
        self.active = True
        self.count = int(count)
        self.duration = float(duration)
        self.completed = 0
        self.artifacts = []
        self._on_finished = on_finished
        self._on_error = on_error
        self._on_progress = on_progress
        log.info("Batch started: %d run(s) of %.1fs", self.count, self.duration)
        self._record_next()
        return True

    def cancel(self) -> None:
        if self.active:
            self._abort(BatchCancelled("Batch cancelled"))

    def _collect(self, batch_id: int, artifact: CaptureArtifact) -> None:
        # Late deliveries from an aborted batch are dropped
        if batch_id == self._batch_id and self.active:
            self.artifacts.append(artifact)

    def _record_next(self) -> None:
        self._handle = None
        if not self.active:
            return
        if self.completed >= self.count:
            self._finish()
            return
        try:
            self.simulation.reset()
            stream = None
            if self.audio is not None:
                self.audio.reset()
                stream = self.audio.get_audio_stream()
            batch_id = self._batch_id
            if not self.simulation.start_recording(lambda a: self._collect(batch_id, a), stream):
                raise BatchError("Another capture is already in progress")
            log.info("Batch run %d/%d recording", self.completed + 1, self.count)
            self._handle = self.scheduler.call_later(self.duration * 1000.0, self._end_run)
        except Exception as e:
            self._abort(e)

    def _end_run(self) -> None:
        self._handle = None
        if not self.active:
            return
        try:
            if not self.simulation.stop_recording():
                raise BatchError(f"Capture for run {self.completed + 1} was stopped outside the batch")
            self.completed += 1
            if self._on_progress is not None:
                self._on_progress(self.completed, self.count)
            self._handle = self.scheduler.call_later(self.pause * 1000.0, self._record_next)
        except Exception as e:
            self._abort(e)

    def _finish(self) -> None:
        artifacts = self.artifacts
        self.artifacts = []
        self.active = False
        log.info("Batch finished: %d artifact(s)", len(artifacts))
        if self._on_finished is not None:
            self._on_finished(artifacts)

    def _abort(self, error: BaseException) -> None:
        log.error("Batch aborted after %d/%d run(s): %s", self.completed, self.count, error)
        if self._handle is not None:
            self.scheduler.cancel(self._handle)
            self._handle = None
        self.active = False
        self.artifacts = []
        self._batch_id += 1
        if self.simulation.is_recording():
            self.simulation.stop_recording()
        if self._on_error is not None:
            self._on_error(error)
