"""
Resolve a cursor position to the point under it.
"""
from typing import Optional

import numpy as np

from .camera import CameraState
from .geometry import RenderableGeometry
from .pointcloud import Point, PointSet

MIN_TOLERANCE = 0.1
TOLERANCE_PER_SIZE = 0.1


def pick_tolerance(display_size: float) -> float:
    """Hit radius for a given point display size; grows with the rendered point."""
    return max(MIN_TOLERANCE, display_size * TOLERANCE_PER_SIZE)


def screen_to_ndc(x, y, width, height):
    """Pixel coordinates (origin top-left) -> normalised device coordinates (+y up)."""
    return (x / width) * 2.0 - 1.0, -(y / height) * 2.0 + 1.0


def ray_point_distances(origin, direction, positions):
    """
    Distances of points relative to a ray.
    Args:
        origin: (3,) ray origin
        direction: (3,) unit ray direction
        positions: (N, 3) points
    Returns:
        along: (N,) signed distance of each point's projection along the ray
        lateral: (N,) perpendicular distance of each point from the ray
    """
    offsets = np.asarray(positions, dtype=np.float64) - origin
    along = offsets @ direction
    lateral = np.linalg.norm(offsets - np.outer(along, direction), axis=1)
    return along, lateral


def pick_index(ndc, camera: CameraState, geometry: RenderableGeometry,
               tolerance: float) -> Optional[int]:
    """
    Index of the point nearest the camera among those within ``tolerance`` of the cursor ray.

    A point counts as a hit when its perpendicular distance to the ray is at
    most ``tolerance`` and it lies between the near and far planes.
    ``tolerance`` is in world units measured from the ray, not in screen pixels.
    """
    if geometry is None or geometry.released or geometry.point_count == 0:
        return None
    origin, direction = camera.ray(ndc)
    positions = geometry.positions_xyz().astype(np.float64)
    along, lateral = ray_point_distances(origin, direction, positions)
    hits = (lateral <= tolerance) & (along >= camera.near) & (along <= camera.far)
    if not np.any(hits):
        return None
    candidates = np.flatnonzero(hits)
    # Ties keep the lowest index
    return int(candidates[np.argmin(along[candidates])])


def pick(ndc, camera: CameraState, geometry: RenderableGeometry, points: PointSet,
         tolerance: float) -> Optional[Point]:
    """
    Point under the cursor, read from the original ``points`` rather than the
    float32 render buffer.
    """
    index = pick_index(ndc, camera, geometry, tolerance)
    if index is None or index >= len(points):
        return None
    return points[index]
