"""
Rendering backends the viewer session draws through.

The session only talks to the ``RenderBackend`` interface: it hands over
geometry buffers, camera poses and display parameters, and asks for one
frame at a time.
"""
from abc import ABC, abstractmethod

import numpy as np
import open3d as o3d

from .logger import get_logger

logger = get_logger(__name__)

# OpenGL camera looks down -Z with +Y up; Open3D's pinhole camera looks down +Z with +Y down
_GL_TO_O3D = np.diag([1.0, -1.0, -1.0, 1.0])


class RenderBackend(ABC):
    @abstractmethod
    def attach(self, geometry, point_size):
        """Upload ``geometry`` and return an opaque handle for it."""

    @abstractmethod
    def detach(self, handle) -> None:
        """Drop a handle returned by ``attach``."""

    @abstractmethod
    def update_colors(self, handle, geometry) -> None:
        """Re-upload the color buffer of an attached geometry."""

    @abstractmethod
    def set_point_size(self, size) -> None: ...

    @abstractmethod
    def set_camera(self, camera) -> None: ...

    @abstractmethod
    def resize(self, width, height) -> None: ...

    @abstractmethod
    def present(self) -> bool:
        """Draw one frame. Returns False once the surface is gone."""

    @abstractmethod
    def close(self) -> None: ...


class HeadlessBackend(RenderBackend):
    """
    Backend without a window. Keeps a record of what it was asked to do,
    which is enough for batch use and for tests.
    """
    def __init__(self, width=800, height=600):
        self.size = (width, height)
        self.point_size = None
        self.camera = None
        self.handles = {}
        self.frames = 0
        self.color_uploads = 0
        self.closed = False
        self._next_handle = 0

    def attach(self, geometry, point_size):
        self._next_handle += 1
        handle = self._next_handle
        self.handles[handle] = geometry
        self.point_size = point_size
        return handle

    def detach(self, handle):
        self.handles.pop(handle, None)

    def update_colors(self, handle, geometry):
        if handle in self.handles:
            self.color_uploads += 1

    def set_point_size(self, size):
        self.point_size = size

    def set_camera(self, camera):
        self.camera = camera.copy()

    def resize(self, width, height):
        self.size = (width, height)

    def present(self):
        if self.closed:
            return False
        self.frames += 1
        return True

    def close(self):
        self.handles.clear()
        self.closed = True


class Open3DBackend(RenderBackend):
    """Draws into an Open3D ``Visualizer`` window."""
    def __init__(self, width=800, height=600, window_name='pypcdview', background=(0.133, 0.133, 0.133),
                 visible=True):
        self.size = (width, height)
        self.vis = o3d.visualization.Visualizer()
        if not self.vis.create_window(window_name=window_name, width=width, height=height, visible=visible):
            raise RuntimeError("Open3D could not create a window")
        options = self.vis.get_render_option()
        options.background_color = np.asarray(background, dtype=np.float64)
        self._closed = False

    def attach(self, geometry, point_size):
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(geometry.positions_xyz().astype(np.float64))
        pcd.colors = o3d.utility.Vector3dVector(geometry.colors_rgb().astype(np.float64))
        self.vis.add_geometry(pcd, reset_bounding_box=True)
        self.set_point_size(point_size)
        return pcd

    def detach(self, handle):
        if not self._closed:
            self.vis.remove_geometry(handle, reset_bounding_box=False)

    def update_colors(self, handle, geometry):
        handle.colors = o3d.utility.Vector3dVector(geometry.colors_rgb().astype(np.float64))
        self.vis.update_geometry(handle)

    def set_point_size(self, size):
        self.vis.get_render_option().point_size = float(size)

    def set_camera(self, camera):
        control = self.vis.get_view_control()
        params = control.convert_to_pinhole_camera_parameters()
        params.extrinsic = _GL_TO_O3D @ camera.view_matrix()
        control.convert_from_pinhole_camera_parameters(params, allow_arbitrary=True)

    def resize(self, width, height):
        # The legacy Visualizer follows the OS window; only the bookkeeping changes here
        self.size = (width, height)
        logger.debug(f"Surface resized to {width}x{height}")

    def present(self):
        if self._closed:
            return False
        alive = self.vis.poll_events()
        self.vis.update_renderer()
        return bool(alive)

    def close(self):
        if not self._closed:
            self.vis.destroy_window()
            self._closed = True
