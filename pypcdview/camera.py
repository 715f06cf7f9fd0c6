"""
Camera pose, framing of a point set, and orbit-style navigation.
"""
import numpy as np
from scipy.spatial.transform import Rotation

from .logger import get_logger

logger = get_logger(__name__)

FIT_OFFSET = 1.5
_EPS = 1e-6


def _normalize(v):
    norm = np.linalg.norm(v)
    if norm < 1e-12:
        return v
    return v / norm


class CameraState:
    """Perspective camera pose plus the orbit-control limits that go with it."""
    def __init__(self, position=(10.0, 10.0, 10.0), target=(0.0, 0.0, 0.0), up=(0.0, 1.0, 0.0),
                 fov=75.0, aspect=4.0 / 3.0, near=0.1, far=1000.0,
                 damping_factor=0.05, min_distance=1.0, max_distance=1000.0):
        self.position = np.asarray(position, dtype=np.float64).copy()
        self.target = np.asarray(target, dtype=np.float64).copy()
        self.up = np.asarray(up, dtype=np.float64).copy()
        self.fov = float(fov)
        self.aspect = float(aspect)
        self.near = float(near)
        self.far = float(far)
        self.damping_factor = float(damping_factor)
        self.min_distance = float(min_distance)
        self.max_distance = float(max_distance)

    @classmethod
    def from_config(cls, config):
        return cls(fov=config.fov, aspect=config.width / config.height, near=config.near,
                   far=config.far, damping_factor=config.damping_factor,
                   min_distance=config.min_distance, max_distance=config.max_distance)

    def copy(self) -> 'CameraState':
        return CameraState(self.position, self.target, self.up, self.fov, self.aspect, self.near,
                           self.far, self.damping_factor, self.min_distance, self.max_distance)

    @property
    def distance(self) -> float:
        return float(np.linalg.norm(self.position - self.target))

    @property
    def direction(self):
        """Unit vector the camera looks along."""
        return _normalize(self.target - self.position)

    def _basis(self):
        forward = self.direction
        if not forward.any():
            # Camera sits on its target: fall back to looking down -Z
            forward = np.array([0.0, 0.0, -1.0])
        right = np.cross(forward, self.up)
        if np.linalg.norm(right) < 1e-9:
            # Looking straight along ``up``: borrow another axis
            right = np.cross(forward, (0.0, 0.0, 1.0))
        right = _normalize(right)
        true_up = np.cross(right, forward)
        return forward, right, true_up

    def view_matrix(self):
        """World -> camera transform (right-handed, camera looks down -Z)."""
        forward, right, true_up = self._basis()
        view = np.eye(4)
        view[0, :3] = right
        view[1, :3] = true_up
        view[2, :3] = -forward
        view[:3, 3] = -view[:3, :3] @ self.position
        return view

    def projection_matrix(self):
        """OpenGL-style perspective projection; ``fov`` is vertical, in degrees."""
        f = 1.0 / np.tan(np.radians(self.fov) / 2.0)
        near, far = self.near, self.far
        proj = np.zeros((4, 4))
        proj[0, 0] = f / self.aspect
        proj[1, 1] = f
        proj[2, 2] = (far + near) / (near - far)
        proj[2, 3] = 2.0 * far * near / (near - far)
        proj[3, 2] = -1.0
        return proj

    def ray(self, ndc):
        """
        World-space ray through normalised device coordinates.
        Args:
            ndc: (x, y), each in [-1, 1], +y up
        Returns:
            origin (3,), unit direction (3,)
        """
        inverse = np.linalg.inv(self.projection_matrix() @ self.view_matrix())
        clip = np.array([ndc[0], ndc[1], 0.5, 1.0])
        world = inverse @ clip
        world = world[:3] / world[3]
        return self.position.copy(), _normalize(world - self.position)

    def __eq__(self, other):
        if not isinstance(other, CameraState):
            return NotImplemented
        return (np.array_equal(self.position, other.position)
                and np.array_equal(self.target, other.target)
                and np.array_equal(self.up, other.up)
                and (self.fov, self.aspect, self.near, self.far) ==
                    (other.fov, other.aspect, other.near, other.far)
                and (self.damping_factor, self.min_distance, self.max_distance) ==
                    (other.damping_factor, other.min_distance, other.max_distance))

    def __repr__(self):
        return (f"CameraState(position={self.position.tolist()}, target={self.target.tolist()}, "
                f"fov={self.fov}, aspect={self.aspect:.3f})")


def bounding_box(positions):
    """
    Axis-aligned bounding box of (N, 3) positions.
    Returns:
        (min_corner, max_corner) as (3,) float64 arrays
    """
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    return positions.min(axis=0), positions.max(axis=0)


def fit_camera(point_set, state: CameraState) -> CameraState:
    """
    Frame every point of ``point_set``.

    The target becomes the bounding-box center and the camera sits at
    ``center + 1.5 * extent`` on every axis, where extent is the longest box
    side. A zero extent (one point, or all points at one spot) is replaced
    by ``state.min_distance``. Field of view and aspect ratio play no part.
    An empty set returns ``state`` unchanged.
    """
    if point_set.point_count == 0:
        return state
    low, high = bounding_box(point_set.positions)
    center = (low + high) / 2.0
    extent = float(np.max(high - low))
    if extent == 0.0:
        extent = state.min_distance

    fitted = state.copy()
    fitted.target = center
    fitted.position = center + extent * FIT_OFFSET
    logger.debug(f"Fitted camera: target={center.tolist()}, extent={extent}")
    return fitted


class OrbitControls:
    """
    Orbit, pan and dolly around ``camera.target`` with damped motion.

    Input methods only queue motion; ``update`` applies a damped share of it
    and is meant to be called once per frame.
    """
    MIN_POLAR = 1e-3

    def __init__(self, camera: CameraState):
        self.camera = camera
        self.enable_damping = True
        self.reset_motion()

    def reset_motion(self):
        self._theta = 0.0
        self._phi = 0.0
        self._pan = np.zeros(3)
        self._scale = 1.0

    def rotate(self, d_theta, d_phi):
        """Queue an orbit: ``d_theta`` around ``up``, ``d_phi`` toward/away from it (radians)."""
        self._theta += d_theta
        self._phi += d_phi

    def pan(self, dx, dy):
        """Queue a pan of ``dx``/``dy`` world units along the camera's right/up axes."""
        _, right, true_up = self.camera._basis()
        self._pan += right * dx + true_up * dy

    def dolly(self, scale):
        """Scale the camera-target distance; values below 1 move closer."""
        if scale <= 0:
            raise ValueError("dolly scale must be positive")
        self._scale *= scale

    def zoom_in(self, step=1.0):
        """Move the camera ``step`` units along its viewing direction."""
        self.camera.position = self.camera.position + self.camera.direction * step
        self.update()

    def zoom_out(self, step=1.0):
        self.camera.position = self.camera.position - self.camera.direction * step
        self.update()

    def update(self) -> bool:
        """
        Advance one frame of motion.

        Returns:
            bool: True if the camera moved
        """
        camera = self.camera
        distance = camera.distance
        idle = (self._theta == 0.0 and self._phi == 0.0 and not self._pan.any()
                and self._scale == 1.0)
        if idle and camera.min_distance <= distance <= camera.max_distance:
            return False

        before = (camera.position.copy(), camera.target.copy())
        factor = camera.damping_factor if self.enable_damping else 1.0
        up = _normalize(camera.up)
        offset = camera.position - camera.target

        d_theta = self._theta * factor
        if d_theta:
            offset = Rotation.from_rotvec(up * d_theta).apply(offset)

        d_phi = self._phi * factor
        radius = np.linalg.norm(offset)
        if d_phi and radius > 0:
            polar = np.arccos(np.clip(np.dot(offset / radius, up), -1.0, 1.0))
            wanted = np.clip(polar + d_phi, self.MIN_POLAR, np.pi - self.MIN_POLAR)
            axis = np.cross(up, offset)
            if np.linalg.norm(axis) > 1e-12:
                offset = Rotation.from_rotvec(_normalize(axis) * (wanted - polar)).apply(offset)

        radius = np.linalg.norm(offset)
        if radius == 0:
            # Camera on its target: back off along +Z
            offset = np.array([0.0, 0.0, 1.0])
            radius = 1.0
        wanted_radius = np.clip(radius * self._scale, camera.min_distance, camera.max_distance)
        offset = offset * (wanted_radius / radius)

        camera.target = camera.target + self._pan * factor
        camera.position = camera.target + offset

        if self.enable_damping:
            self._theta *= 1.0 - factor
            self._phi *= 1.0 - factor
            self._pan *= 1.0 - factor
            if abs(self._theta) < _EPS:
                self._theta = 0.0
            if abs(self._phi) < _EPS:
                self._phi = 0.0
            if np.linalg.norm(self._pan) < _EPS:
                self._pan[:] = 0.0
        else:
            self._theta = self._phi = 0.0
            self._pan[:] = 0.0
        self._scale = 1.0

        return not (np.allclose(before[0], camera.position, atol=_EPS, rtol=0)
                    and np.allclose(before[1], camera.target, atol=_EPS, rtol=0))
