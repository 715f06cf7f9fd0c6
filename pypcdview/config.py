"""
Viewer settings and their JSON persistence.
"""
import json
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Tuple

from .logger import get_logger
from .utils import WHITE, color_to_hex, parse_color

logger = get_logger(__name__)

MIN_POINT_SIZE = 0.1
MAX_POINT_SIZE = 10.0


def clamp_point_size(size: float) -> float:
    """Clamp to the supported display range, warning when the value moves."""
    size = float(size)
    clamped = min(max(size, MIN_POINT_SIZE), MAX_POINT_SIZE)
    if clamped != size:
        logger.warning(f"Point size {size} outside [{MIN_POINT_SIZE}, {MAX_POINT_SIZE}], using {clamped}")
    return clamped


@dataclass
class ViewerConfig:
    point_size: float = 2.0
    point_color: Tuple[float, float, float] = WHITE
    width: int = 800
    height: int = 600
    background: Tuple[float, float, float] = field(default=(0x22 / 255, 0x22 / 255, 0x22 / 255))
    fov: float = 75.0
    near: float = 0.1
    far: float = 1000.0
    damping_factor: float = 0.05
    min_distance: float = 1.0
    max_distance: float = 1000.0
    # Seconds between render-loop ticks
    frame_interval: float = 1.0 / 60.0

    def validated(self) -> 'ViewerConfig':
        """Return a copy with colors parsed and every value in range."""
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Viewport must be positive, got {self.width}x{self.height}")
        if not 0.0 < self.near < self.far:
            raise ValueError(f"Need 0 < near < far, got near={self.near}, far={self.far}")
        if not 0.0 < self.damping_factor <= 1.0:
            raise ValueError(f"damping_factor must be in (0, 1], got {self.damping_factor}")
        if not 0.0 <= self.min_distance <= self.max_distance:
            raise ValueError("Need 0 <= min_distance <= max_distance")
        if self.frame_interval < 0:
            raise ValueError("frame_interval must not be negative")
        return replace(
            self,
            point_size=clamp_point_size(self.point_size),
            point_color=parse_color(self.point_color),
            background=parse_color(self.background),
            width=int(self.width),
            height=int(self.height),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data['point_color'] = color_to_hex(self.point_color)
        data['background'] = color_to_hex(self.background)
        return data


def load_config(path) -> ViewerConfig:
    """
    Read settings from a JSON file; missing keys keep their defaults.

    An unreadable or malformed file yields the defaults and a warning.
    """
    path = Path(path)
    if not path.exists():
        return ViewerConfig().validated()
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Could not read config {path}: {e}; using defaults")
        return ViewerConfig().validated()

    known = {f.name for f in fields(ViewerConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
    return ViewerConfig(**{k: v for k, v in data.items() if k in known}).validated()


def save_config(config: ViewerConfig, path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(config.to_dict(), f, indent=2)
