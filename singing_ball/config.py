import json
from dataclasses import dataclass, field, fields, replace
from typing import Optional, Tuple


@dataclass
class TuningParameters:
    """Live-tunable physics knobs. Boost and growth are stored as multipliers (1 + rate)."""
    gravity: float = 0.4
    velocity_decay: float = 0.9995
    velocity_boost: float = 1.02
    growth_factor: float = 1.015

    @classmethod
    def from_rates(cls, gravity: float = 0.4, velocity_increase: float = 0.02,
                   velocity_decay: float = 0.9995, growth_rate: float = 0.015) -> "TuningParameters":
        return cls(gravity=float(gravity), velocity_decay=float(velocity_decay),
                   velocity_boost=1.0 + float(velocity_increase), growth_factor=1.0 + float(growth_rate))

    def set_gravity(self, value: float) -> None:
        self.gravity = float(value)

    def set_velocity_increase(self, rate: float) -> None:
        self.velocity_boost = 1.0 + float(rate)

    def set_velocity_decay(self, value: float) -> None:
        self.velocity_decay = float(value)

    def set_growth_rate(self, rate: float) -> None:
        self.growth_factor = 1.0 + float(rate)


@dataclass
class SimulationConfig:
    width: int = 1080
    height: int = 1920
    # Ring radius is min(w, h) / 2 - boundary_inset; ball may grow to ring radius - max_radius_inset
    boundary_inset: float = 125.0
    max_radius_inset: float = 10.0
    initial_radius: float = 5.0
    # Start position as (w / x_div, h / y_div)
    start_divisors: Tuple[float, float] = (2.0, 2.7)
    initial_velocity: Tuple[float, float] = (0.8, 0.8)
    restitution: float = 0.95
    min_speed: float = 1.0
    trail_length: int = 5
    frame_rate: float = 60.0
    boundary_line_width: int = 25
    mark_line_width: int = 2
    # Trail alpha peaks at trail_max_alpha for the newest afterimage (33 / 255 ~ 13%)
    trail_max_alpha: float = 33.0 / 255.0
    timer_offset: float = 60.0


@dataclass
class CaptureConfig:
    fps: float = 60.0
    fourcc: str = "mp4v"
    extension: str = ".mp4"
    sample_rate: int = 44100
    audio_bitrate: str = "192k"
    ffmpeg: str = "ffmpeg"
    chunk_size: int = 1 << 16

    @property
    def mime_type(self) -> str:
        return {
            ".mp4": "video/mp4",
            ".avi": "video/x-msvideo",
            ".mkv": "video/x-matroska",
            ".webm": "video/webm",
            ".mov": "video/quicktime",
        }.get(self.extension.lower(), "application/octet-stream")


@dataclass
class BatchConfig:
    count: int = 1
    duration: float = 10.0
    pause: float = 1.0


@dataclass
class AppConfig:
    tuning: TuningParameters = field(default_factory=TuningParameters)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)


def _apply_section(obj, data: dict, section: str):
    known = {f.name: f for f in fields(obj)}
    updates = {}
    for key, value in data.items():
        if key not in known:
            raise ValueError(f"Unknown key '{key}' in config section '{section}'")
        current = getattr(obj, key)
        if isinstance(current, tuple):
            value = tuple(float(v) for v in value)
        elif isinstance(current, bool):
            value = bool(value)
        elif isinstance(current, int):
            if isinstance(value, bool) or float(value) != int(float(value)):
                raise ValueError(f"'{key}' in config section '{section}' must be a whole number, got {value!r}")
            value = int(float(value))
        elif isinstance(current, float):
            value = float(value)
        updates[key] = value
    return replace(obj, **updates)


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load an AppConfig from a JSON file with optional tuning/simulation/capture/batch sections.

    Tuning accepts either stored factors (velocity_boost, growth_factor) or the
    user-facing rates (velocity_increase, growth_rate).
    """
    cfg = AppConfig()
    if not path:
        return cfg
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Config root must be an object: {path}")
    for section in data:
        if section not in ("tuning", "simulation", "capture", "batch"):
            raise ValueError(f"Unknown config section '{section}'")

    tuning = dict(data.get("tuning", {}))
    if "velocity_increase" in tuning:
        tuning["velocity_boost"] = 1.0 + float(tuning.pop("velocity_increase"))
    if "growth_rate" in tuning:
        tuning["growth_factor"] = 1.0 + float(tuning.pop("growth_rate"))
    cfg.tuning = _apply_section(cfg.tuning, tuning, "tuning")
    cfg.simulation = _apply_section(cfg.simulation, data.get("simulation", {}), "simulation")
    cfg.capture = _apply_section(cfg.capture, data.get("capture", {}), "capture")
    cfg.batch = _apply_section(cfg.batch, data.get("batch", {}), "batch")
    return cfg
