"""
Render-ready buffers derived from a PointSet.
"""
import numpy as np

from .logger import get_logger
from .utils import WHITE

logger = get_logger(__name__)


class RenderableGeometry:
    def __init__(self, positions, colors, has_explicit_colors):
        """
        Args:
            positions: flat float32 buffer, 3 values per point, in PointSet order
            colors: flat float32 buffer, 3 channels in [0, 1] per point
            has_explicit_colors: True when at least one point carried its own color
        """
        self.positions = positions
        self.colors = colors
        self.has_explicit_colors = bool(has_explicit_colors)
        # Set by a render backend once the buffers are uploaded
        self.handle = None
        self._released = False

    @property
    def point_count(self) -> int:
        return len(self.positions) // 3

    @property
    def released(self) -> bool:
        return self._released

    def positions_xyz(self):
        """(N, 3) view of the position buffer."""
        return self.positions.reshape(-1, 3)

    def colors_rgb(self):
        """(N, 3) view of the color buffer."""
        return self.colors.reshape(-1, 3)

    def apply_uniform_color(self, color) -> bool:
        """
        Paint every point with ``color``, unless the file supplied its own colors.

        Returns:
            bool: whether the color buffer was rewritten
        """
        self._check_live()
        if self.has_explicit_colors:
            return False
        self.colors_rgb()[:] = np.asarray(color, dtype=np.float32)
        return True

    def release(self, backend=None) -> None:
        """Drop the buffers and the backend handle. Safe to call twice."""
        if self._released:
            return
        if backend is not None and self.handle is not None:
            backend.detach(self.handle)
        self.handle = None
        self.positions = np.zeros(0, dtype=np.float32)
        self.colors = np.zeros(0, dtype=np.float32)
        self._released = True

    def _check_live(self):
        if self._released:
            raise RuntimeError("RenderableGeometry has been released")

    def __repr__(self):
        state = 'released' if self._released else f"{self.point_count} points"
        return f"RenderableGeometry({state}, has_explicit_colors={self.has_explicit_colors})"


def build_geometry(point_set, default_color=WHITE) -> RenderableGeometry:
    """
    Allocate fresh position and color buffers for ``point_set``.

    Row ``i`` of both buffers belongs to ``point_set[i]``; points without a
    color get ``default_color``.
    """
    n = point_set.point_count
    positions = np.ascontiguousarray(point_set.positions, dtype=np.float32).reshape(3 * n)
    colors = np.empty((n, 3), dtype=np.float32)
    colors[:] = np.asarray(default_color, dtype=np.float32)
    mask = point_set.color_mask
    colors[mask] = point_set.colors[mask]
    return RenderableGeometry(positions.copy(), colors.reshape(3 * n), bool(mask.any()))


class GeometryBuilder:
    """
    Builds geometry and retains the most recent one, so that at most one is live.
    """
    def __init__(self, default_color=WHITE):
        self.default_color = default_color
        self.current = None

    def build(self, point_set, backend=None) -> RenderableGeometry:
        """Release the retained geometry, then build and retain a new one."""
        self.release(backend)
        return self.adopt(build_geometry(point_set, self.default_color), backend)

    def adopt(self, geometry: RenderableGeometry, backend=None) -> RenderableGeometry:
        """Retain an already built ``geometry`` in place of the current one, which is released."""
        if geometry is not self.current:
            self.release(backend)
        logger.debug(f"Retained geometry for {geometry.point_count} points "
                     f"(explicit colors: {geometry.has_explicit_colors})")
        self.current = geometry
        return geometry

    def release(self, backend=None) -> None:
        if self.current is not None:
            self.current.release(backend)
            self.current = None
