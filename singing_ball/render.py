import logging
import random
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from .config import SimulationConfig
from .physics import PhysicsState

log = logging.getLogger(__name__)

Color = Tuple[int, int, int]
FrameListener = Callable[[np.ndarray], None]

WHITE: Color = (255, 255, 255)

# BGR
_NAMED_COLORS = {
    "white": WHITE,
    "black": (0, 0, 0),
    "red": (0, 0, 255),
    "green": (0, 128, 0),
    "lime": (0, 255, 0),
    "blue": (255, 0, 0),
    "yellow": (0, 255, 255),
    "cyan": (255, 255, 0),
    "magenta": (255, 0, 255),
    "orange": (0, 165, 255),
    "gray": (128, 128, 128),
}

# Hershey faces standing in for the usual browser font families
_FONT_FACES = {
    "times new roman": cv2.FONT_HERSHEY_TRIPLEX,
    "georgia": cv2.FONT_HERSHEY_COMPLEX,
    "courier new": cv2.FONT_HERSHEY_PLAIN,
    "montserrat": cv2.FONT_HERSHEY_DUPLEX,
    "montserrat bold": cv2.FONT_HERSHEY_DUPLEX,
    "verdana": cv2.FONT_HERSHEY_DUPLEX,
    "arial": cv2.FONT_HERSHEY_SIMPLEX,
}


class SurfaceError(RuntimeError):
    pass


@dataclass(frozen=True)
class LabelEntity:
    id: str
    text: str
    x: float
    y: float
    font: str = "Arial"
    size: int = 30
    color: Union[str, Color] = "#FFFFFF"
    bold: bool = False


def hsv_to_bgr(h: int, s: int, v: int) -> Color:
    arr = np.uint8([[[h, s, v]]])
    bgr = cv2.cvtColor(arr, cv2.COLOR_HSV2BGR)[0, 0]
    return int(bgr[0]), int(bgr[1]), int(bgr[2])


def random_simulation_color(rng: random.Random) -> Color:
    """Fully saturated, mid-lightness color of a random hue (OpenCV hue is 0..179)."""
    hue = rng.random() * 360.0
    return hsv_to_bgr(int(hue / 2.0) % 180, 255, 255)


def parse_color(color: Union[str, Sequence[int]]) -> Color:
    """'#RRGGBB' / '#RGB' / a basic color name -> BGR tuple. Tuples are taken as BGR already."""
    if isinstance(color, str):
        named = _NAMED_COLORS.get(color.strip().lower())
        if named is not None:
            return named
        s = color.strip().lstrip("#")
        if len(s) == 3:
            s = "".join(ch * 2 for ch in s)
        if len(s) != 6 or any(ch not in "0123456789abcdefABCDEF" for ch in s):
            raise ValueError(f"Bad color: {color!r}")
        r, g, b = int(s[0:2], 16), int(s[2:4], 16), int(s[4:6], 16)
        return b, g, r
    channels = tuple(int(c) for c in color)
    if len(channels) != 3 or any(c < 0 or c > 255 for c in channels):
        raise ValueError(f"Bad color: {color!r}")
    return channels


def font_face(family: str) -> int:
    return _FONT_FACES.get((family or "").strip().lower(), cv2.FONT_HERSHEY_SIMPLEX)


def check_labels(labels: Iterable[LabelEntity]) -> List[LabelEntity]:
    """Reject labels draw() could not paint, before they reach the frame loop."""
    checked = list(labels)
    for label in checked:
        try:
            parse_color(label.color)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Label '{label.id}': {e}") from e
        if int(label.size) <= 0:
            raise ValueError(f"Label '{label.id}': size must be positive, got {label.size}")
    return checked


def label_contains(label: LabelEntity, x: float, y: float) -> bool:
    # Rough box: half an em per character, one em tall
    half_w = len(label.text) * label.size / 4.0
    half_h = label.size / 2.0
    return abs(x - label.x) <= half_w and abs(y - label.y) <= half_h


def draw_centered_text(frame: np.ndarray, text: str, center: Tuple[float, float], family: str,
                       size: int, color: Color, bold: bool = False) -> None:
    face = font_face(family)
    thickness = max(1, int(round(size / 15.0)))
    if bold or "bold" in (family or "").lower():
        thickness *= 2
    # Canvas font sizes are em sizes; Hershey scales by cap height
    scale = cv2.getFontScaleFromHeight(face, max(1, int(size * 0.7)), thickness)
    (tw, th), _ = cv2.getTextSize(text, face, scale, thickness)
    org = (int(round(center[0] - tw / 2.0)), int(round(center[1] + th / 2.0)))
    cv2.putText(frame, text, org, face, scale, color, thickness, cv2.LINE_AA)


def draw_translucent_circle(frame: np.ndarray, center: Tuple[float, float], radius: float,
                            color: Color, alpha: float) -> None:
    x, y, r = int(round(center[0])), int(round(center[1])), max(1, int(round(radius)))
    h, w = frame.shape[:2]
    x0, y0 = max(0, x - r - 1), max(0, y - r - 1)
    x1, y1 = min(w, x + r + 2), min(h, y + r + 2)
    if x0 >= x1 or y0 >= y1:
        return
    # Blend only the circle's bounding box, not the whole frame
    roi = frame[y0:y1, x0:x1]
    overlay = roi.copy()
    cv2.circle(overlay, (x - x0, y - y0), r, color, thickness=-1, lineType=cv2.LINE_AA)
    frame[y0:y1, x0:x1] = cv2.addWeighted(overlay, alpha, roi, 1.0 - alpha, 0)


class Renderer:
    """Repaints the whole surface from a PhysicsState every call."""

    def __init__(self, surface: np.ndarray, config: Optional[SimulationConfig] = None,
                 rng: Optional[random.Random] = None):
        if not isinstance(surface, np.ndarray) or surface.dtype != np.uint8 \
                or surface.ndim != 3 or surface.shape[2] != 3:
            raise SurfaceError("Surface must be an HxWx3 uint8 array")
        if not surface.flags["C_CONTIGUOUS"] or not surface.flags["WRITEABLE"]:
            raise SurfaceError("Surface must be a writeable, contiguous array")
        self.surface = surface
        self.config = config or SimulationConfig()
        self.rng = rng or random.Random()
        self.color: Color = random_simulation_color(self.rng)
        self._listeners: List[FrameListener] = []

    @property
    def size(self) -> Tuple[int, int]:
        h, w = self.surface.shape[:2]
        return w, h

    def reroll_color(self) -> Color:
        self.color = random_simulation_color(self.rng)
        return self.color

    def add_frame_listener(self, listener: FrameListener) -> None:
        self._listeners.append(listener)

    def remove_frame_listener(self, listener: FrameListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def draw(self, state: PhysicsState, labels: Iterable[LabelEntity], elapsed: float) -> np.ndarray:
        cfg = self.config
        frame = self.surface
        color = self.color
        boundary = state.boundary
        ball = state.ball
        center = (int(round(boundary.cx)), int(round(boundary.cy)))
        ball_pt = (int(round(ball.center[0])), int(round(ball.center[1])))

        frame[:] = 0

        ring_r = int(round(boundary.radius + cfg.boundary_line_width / 2.0))
        cv2.circle(frame, center, ring_r, color, thickness=cfg.boundary_line_width, lineType=cv2.LINE_AA)

        for mx, my in state.collision_marks:
            cv2.line(frame, (int(round(mx)), int(round(my))), ball_pt, color,
                     thickness=cfg.mark_line_width, lineType=cv2.LINE_AA)

        for label in labels:
            draw_centered_text(frame, label.text, (label.x, label.y), label.font, int(label.size),
                               parse_color(label.color), label.bold)

        draw_centered_text(frame, f"Time: {elapsed:.1f}s",
                           (boundary.cx, boundary.cy + boundary.radius + cfg.timer_offset), "Arial", 24, WHITE)

        # Afterimages fade in from oldest to newest
        steps = max(1, cfg.trail_length)
        for i, pos in enumerate(state.trail):
            alpha = (i + 1) / steps * cfg.trail_max_alpha
            draw_translucent_circle(frame, pos, ball.radius, color, alpha)

        cv2.circle(frame, ball_pt, max(1, int(round(ball.radius))), color, thickness=-1, lineType=cv2.LINE_AA)

        for listener in list(self._listeners):
            listener(frame)
        return frame
