"""
pypcdview: Python library for loading, framing and inspecting PCD point clouds
"""

# Make core modules available at package level
from .errors import PcdViewerError, FormatError, DecompressionError
from .pointcloud import Point, PointSet
from .pcd import parse, parse_header, write_ascii
from .geometry import RenderableGeometry, GeometryBuilder, build_geometry
from .camera import CameraState, OrbitControls, fit_camera
from .picking import pick, pick_index, pick_tolerance
from .compression import gunzip, needs_decompression
from .config import ViewerConfig, load_config, save_config
from .backend import RenderBackend, HeadlessBackend, Open3DBackend
from .session import ViewerSession, SessionListener, SessionState, TooltipPayload, RenderLoop
from .logger import ViewerLogger, LogLevel, get_logger, set_logger

__all__ = [
    'PcdViewerError',
    'FormatError',
    'DecompressionError',
    'Point',
    'PointSet',
    'parse',
    'parse_header',
    'write_ascii',
    'RenderableGeometry',
    'GeometryBuilder',
    'build_geometry',
    'CameraState',
    'OrbitControls',
    'fit_camera',
    'pick',
    'pick_index',
    'pick_tolerance',
    'gunzip',
    'needs_decompression',
    'ViewerConfig',
    'load_config',
    'save_config',
    'RenderBackend',
    'HeadlessBackend',
    'Open3DBackend',
    'ViewerSession',
    'SessionListener',
    'SessionState',
    'TooltipPayload',
    'RenderLoop',
    'ViewerLogger',
    'LogLevel',
    'get_logger',
    'set_logger',
]
