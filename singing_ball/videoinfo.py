import os
import tempfile
from dataclasses import dataclass

import cv2

from .capture import CaptureArtifact


@dataclass(frozen=True)
class VideoInfo:
    path: str
    width: int
    height: int
    frames: int
    fps: float

    @property
    def duration(self) -> float:
        return self.frames / self.fps if self.fps > 0 else 0.0

    def describe(self) -> str:
        return "\n".join([
            f"path: {self.path}",
            f"resolution: {self.width}x{self.height}",
            f"frames: {self.frames}",
            f"fps: {self.fps:.3f}",
            f"duration_sec: {self.duration:.3f}",
        ])


def inspect_video(path: str) -> VideoInfo:
    cap = cv2.VideoCapture(path)
    if not cap.isOpened():
        raise ValueError(f"Cannot open video: {path}")
    try:
        frames = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        if frames <= 0:
            # Some containers don't carry a frame count; walk the stream
            frames = 0
            while cap.grab():
                frames += 1
        return VideoInfo(
            path=path,
            width=int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            height=int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            frames=frames,
            fps=cap.get(cv2.CAP_PROP_FPS) or 0.0,
        )
    finally:
        cap.release()


def inspect_artifact(artifact: CaptureArtifact) -> VideoInfo:
    """Spill an in-memory artifact to a temp file and inspect it."""
    fd, path = tempfile.mkstemp(suffix=artifact.extension)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(artifact.data)
        return inspect_video(path)
    finally:
        os.remove(path)
