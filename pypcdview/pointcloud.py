"""
Point and PointSet: the decoded contents of one PCD file.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import open3d as o3d


@dataclass(frozen=True)
class Point:
    x: float
    y: float
    z: float
    color: Optional[Tuple[float, float, float]] = None

    @property
    def has_color(self) -> bool:
        return self.color is not None

    @property
    def xyz(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)


class PointSet:
    """
    Ordered, read-only set of points loaded from one file.

    Coordinates and colors are kept as (N, 3) float64 arrays; ``color_mask``
    marks which rows carry an explicit color. Indexing returns ``Point``
    objects, and that index is what picking reports back.
    """
    def __init__(self, positions, colors=None, color_mask=None, file_name=''):
        positions = np.array(positions, dtype=np.float64).reshape(-1, 3)
        n = len(positions)
        if colors is None:
            colors = np.zeros((n, 3), dtype=np.float64)
            color_mask = np.zeros(n, dtype=bool)
        else:
            colors = np.array(colors, dtype=np.float64).reshape(-1, 3)
            if color_mask is None:
                color_mask = np.ones(n, dtype=bool)
            color_mask = np.array(color_mask, dtype=bool).reshape(-1)
        if len(colors) != n or len(color_mask) != n:
            raise ValueError("positions, colors and color_mask must have the same length")
        if not np.all(np.isfinite(positions)):
            raise ValueError("PointSet coordinates must be finite")

        self._positions = positions
        self._colors = colors
        self._color_mask = color_mask
        for array in (self._positions, self._colors, self._color_mask):
            array.flags.writeable = False
        self.file_name = file_name

    @classmethod
    def from_points(cls, points, file_name=''):
        """Build a set from an iterable of ``Point``."""
        points = list(points)
        positions = np.array([p.xyz for p in points], dtype=np.float64).reshape(-1, 3)
        colors = np.array([p.color if p.has_color else (0.0, 0.0, 0.0) for p in points],
                          dtype=np.float64).reshape(-1, 3)
        mask = np.array([p.has_color for p in points], dtype=bool)
        return cls(positions, colors, mask, file_name=file_name)

    @classmethod
    def from_file(cls, filename):
        """Load a .pcd or .pcd.gz file from disk."""
        import os
        from .compression import gunzip, needs_decompression
        from .pcd import parse

        with open(filename, 'rb') as f:
            data = f.read()
        name = os.path.basename(filename)
        if needs_decompression(name):
            data = gunzip(data)
        return parse(data, file_name=name)

    @property
    def point_count(self) -> int:
        return len(self._positions)

    @property
    def positions(self):
        return self._positions

    @property
    def colors(self):
        return self._colors

    @property
    def color_mask(self):
        return self._color_mask

    @property
    def has_colors(self) -> bool:
        return bool(self._color_mask.any())

    def __len__(self):
        return len(self._positions)

    def __getitem__(self, index) -> Point:
        if isinstance(index, slice):
            raise TypeError("PointSet does not support slicing")
        x, y, z = (float(v) for v in self._positions[index])
        if self._color_mask[index]:
            r, g, b = (float(v) for v in self._colors[index])
            return Point(x, y, z, (r, g, b))
        return Point(x, y, z)

    def __iter__(self):
        for i in range(len(self)):
            yield self[i]

    def __repr__(self):
        return f"PointSet(file_name={self.file_name!r}, point_count={self.point_count})"

    def bounds(self):
        """Axis-aligned (min, max) corners, or None for an empty set."""
        if self.point_count == 0:
            return None
        return self._positions.min(axis=0), self._positions.max(axis=0)

    def to_numpy(self):
        """Return points as Nx3 numpy array."""
        return self._positions

    def to_open3d(self):
        """Return an Open3D PointCloud; colorless rows are painted white."""
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(self._positions)
        if self.has_colors:
            colors = np.where(self._color_mask[:, None], self._colors, 1.0)
            pcd.colors = o3d.utility.Vector3dVector(colors)
        return pcd
