import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np

from .audio import AudioError, AudioStream, AudioTrack, mix_tracks, write_wav
from .config import CaptureConfig
from .render import Renderer
from .scheduler import Scheduler

log = logging.getLogger(__name__)

INACTIVE = "inactive"
RECORDING = "recording"


class CaptureError(RuntimeError):
    pass


@dataclass(frozen=True)
class CaptureArtifact:
    data: bytes
    mime_type: str
    extension: str
    frame_count: int
    duration: float
    has_audio: bool = False

    @property
    def size(self) -> int:
        return len(self.data)


def mux_audio_with_video(video_in: str, wav_in: str, video_out: str, ffmpeg: str = "ffmpeg",
                         audio_bitrate: str = "192k") -> bool:
    """Mux WAV onto video using ffmpeg. Returns True on success."""
    cmd = [
        ffmpeg, '-y', '-loglevel', 'error',
        '-i', video_in,
        '-i', wav_in,
        '-c:v', 'copy',
        '-c:a', 'aac', '-b:a', audio_bitrate,
        '-map', '0:v:0', '-map', '1:a:0',
        '-shortest',
        video_out,
    ]
    try:
        res = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=False)
    except OSError as e:
        log.error("Could not run %s: %s", ffmpeg, e)
        return False
    if res.returncode != 0:
        log.error("ffmpeg exited with %d: %s", res.returncode, res.stderr.decode(errors="replace").strip())
        return False
    return os.path.exists(video_out) and os.path.getsize(video_out) > 0


class CaptureSession:
    """Records the renderer's surface (plus optional audio tracks) into one artifact at a time.

    Frames are paced by the scheduler clock: whenever the renderer paints, the
    writer is topped up to the number of frames the elapsed time calls for, so
    the video stays in step with the audio even if the loop runs slow or is
    paused. A second start() while recording is ignored.
    """

    def __init__(self, renderer: Renderer, scheduler: Scheduler, config: Optional[CaptureConfig] = None):
        self.renderer = renderer
        self.scheduler = scheduler
        self.config = config or CaptureConfig()
        self.state = INACTIVE
        self._chunks: List[bytes] = []
        self._writer: Optional[cv2.VideoWriter] = None
        self._workdir: Optional[str] = None
        self._video_path: Optional[str] = None
        self._taps: List[Tuple[AudioTrack, int]] = []
        self._on_complete: Optional[Callable[[CaptureArtifact], None]] = None
        self._started_at = 0.0
        self._frames_written = 0

    @property
    def is_active(self) -> bool:
        return self.state == RECORDING

    def start(self, on_complete: Optional[Callable[[CaptureArtifact], None]] = None,
              audio_stream: Optional[AudioStream] = None) -> bool:
        if self.state != INACTIVE:
            log.warning("Capture already in progress; start ignored")
            return False
        cfg = self.config
        tracks = audio_stream.get_audio_tracks() if audio_stream is not None else []
        for track in tracks:
            try:
                track.validate()
            except AudioError as e:
                raise CaptureError(f"Malformed audio track: {e}") from e
        if tracks and shutil.which(cfg.ffmpeg) is None:
            raise CaptureError(f"{cfg.ffmpeg} not found on PATH; cannot record audio")
        if len(cfg.fourcc) != 4:
            raise CaptureError(f"Bad fourcc: {cfg.fourcc!r}")

        try:
            workdir = tempfile.mkdtemp(prefix="singing_ball_")
        except OSError as e:
            raise CaptureError(f"Cannot create capture directory: {e}") from e
        video_path = os.path.join(workdir, "video" + cfg.extension)
        w, h = self.renderer.size
        writer = cv2.VideoWriter(video_path, cv2.VideoWriter_fourcc(*cfg.fourcc), cfg.fps, (w, h))
        if not writer.isOpened():
            shutil.rmtree(workdir, ignore_errors=True)
            raise CaptureError(f"Cannot open {cfg.fourcc} writer for {cfg.extension} at {w}x{h}")

        now = self.scheduler.now()
        self._writer = writer
        self._workdir = workdir
        self._video_path = video_path
        self._taps = [(track, track.open_tap(now)) for track in tracks]
        self._chunks = []
        self._on_complete = on_complete
        self._started_at = now
        self._frames_written = 0
        self.state = RECORDING
        self.renderer.add_frame_listener(self._on_frame)
        # Whatever is on the surface right now is frame zero
        self._write_until(self.renderer.surface, 1)
        log.info("Capture started: %dx%d @ %.0f fps, %d audio track(s)", w, h, cfg.fps, len(tracks))
        return True

    def _frames_due(self, now: float) -> int:
        return int((now - self._started_at) * self.config.fps + 1e-6)

    def _on_frame(self, frame: np.ndarray) -> None:
        self._write_until(frame, self._frames_due(self.scheduler.now()) + 1)

    def _write_until(self, frame: np.ndarray, total: int) -> None:
        while self._frames_written < total:
            self._writer.write(frame)
            self._frames_written += 1

    def _on_data(self, chunk: bytes) -> None:
        if len(chunk) > 0:
            self._chunks.append(chunk)

    def stop(self) -> bool:
        if self.state != RECORDING:
            return False
        cfg = self.config
        now = self.scheduler.now()
        self.renderer.remove_frame_listener(self._on_frame)
        # Hold the last picture up to the stop instant
        self._write_until(self.renderer.surface, max(1, self._frames_due(now)))
        self._writer.release()
        frames = self._frames_written
        duration = frames / float(cfg.fps)

        try:
            final_path = self._video_path
            has_audio = False
            if self._taps:
                audio = mix_tracks([t for t, _ in self._taps], self._started_at, self._started_at + duration,
                                   cfg.sample_rate)
                wav_path = os.path.join(self._workdir, "mix.wav")
                write_wav(wav_path, audio, cfg.sample_rate)
                muxed = os.path.join(self._workdir, "capture" + cfg.extension)
                if mux_audio_with_video(self._video_path, wav_path, muxed, cfg.ffmpeg, cfg.audio_bitrate):
                    final_path = muxed
                    has_audio = True
                else:
                    log.warning("Audio mux failed; artifact will be silent")

            if os.path.exists(final_path):
                with open(final_path, "rb") as f:
                    for chunk in iter(lambda: f.read(cfg.chunk_size), b""):
                        self._on_data(chunk)
            else:
                log.warning("Encoder produced no output for %d frame(s)", frames)
            artifact = CaptureArtifact(b"".join(self._chunks), cfg.mime_type, cfg.extension,
                                       frames, duration, has_audio)
        finally:
            for track, tap in self._taps:
                track.close_tap(tap)
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._taps = []
            self._chunks = []
            self._writer = None
            self._workdir = None
            self._video_path = None
            self.state = INACTIVE

        log.info("Capture stopped: %d frame(s), %.2fs, %d bytes", frames, duration, artifact.size)
        callback = self._on_complete
        self._on_complete = None
        if callback is not None:
            self.scheduler.call_soon(lambda: callback(artifact))
        return True
