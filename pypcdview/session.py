"""
ViewerSession: loads PCD files into a render backend and handles interaction.

The session owns the point set, its geometry, the camera and the render
loop. Everything runs on one asyncio event loop; only decompression and
parsing are pushed to the loop's executor so frames keep coming while a
file loads.
"""
import asyncio
import inspect
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Optional

from .backend import HeadlessBackend, RenderBackend
from .camera import CameraState, OrbitControls, fit_camera
from .compression import gunzip, needs_decompression
from .config import ViewerConfig, clamp_point_size
from .errors import DecompressionError, FormatError
from .geometry import GeometryBuilder, build_geometry
from .logger import get_logger
from .pcd import parse
from .picking import pick, pick_tolerance, screen_to_ndc
from .pointcloud import Point, PointSet
from .utils import parse_color

logger = get_logger(__name__)


class SessionState(Enum):
    EMPTY = 'empty'
    LOADING = 'loading'
    READY = 'ready'
    ERROR = 'error'
    DISPOSED = 'disposed'


@dataclass(frozen=True)
class TooltipPayload:
    screen_x: float
    screen_y: float
    point: Point


class SessionListener:
    """Receives the events a UI needs. Override what you use; the rest do nothing."""

    def on_load_start(self, file_name: str) -> None:
        pass

    def on_load_success(self, point_count: int, file_name: str) -> None:
        pass

    def on_load_error(self, message: str) -> None:
        pass

    def on_hover(self, payload: Optional[TooltipPayload]) -> None:
        pass


class RenderLoop:
    """
    Calls ``tick`` once per frame until stopped.

    Each tick re-arms the next one with ``loop.call_later``. ``tick``
    returning False ends the loop, as does ``stop``.
    """
    def __init__(self, tick, interval=1.0 / 60.0):
        self._tick = tick
        self.interval = interval
        self._loop = None
        self._handle = None
        self._running = False
        self.stopped = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self, loop=None) -> None:
        if self.stopped:
            raise RuntimeError("RenderLoop cannot be restarted after stop()")
        if self._running:
            return
        self._loop = loop or asyncio.get_running_loop()
        self._running = True
        self._handle = self._loop.call_soon(self._run)

    def _run(self):
        self._handle = None
        if not self._running:
            return
        try:
            keep_going = self._tick()
        except Exception:
            self.stop()
            raise
        if not keep_going:
            logger.info("Render loop finished")
            self.stop()
            return
        if self._running:
            self._handle = self._loop.call_later(self.interval, self._run)

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        self._running = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class ViewerSession:
    def __init__(self, backend: Optional[RenderBackend] = None, config: Optional[ViewerConfig] = None,
                 decompress=gunzip, listener: Optional[SessionListener] = None):
        """
        Args:
            backend: where frames are drawn; a HeadlessBackend when omitted
            config: display settings
            decompress: ``bytes -> bytes`` callable (plain or coroutine) used
                for file names ending in .gz
            listener: receives load and hover events
        """
        self.config = (config or ViewerConfig()).validated()
        self.backend = backend or HeadlessBackend(self.config.width, self.config.height)
        self.decompress = decompress
        self.listener = listener or SessionListener()

        self.camera = CameraState.from_config(self.config)
        self.controls = OrbitControls(self.camera)
        self.builder = GeometryBuilder()
        self.point_set: Optional[PointSet] = None
        self.file_name: Optional[str] = None
        self.state = SessionState.EMPTY
        self.last_error: Optional[str] = None
        self.tooltip: Optional[TooltipPayload] = None

        self._load_seq = 0
        self._render_loop = RenderLoop(self.frame, self.config.frame_interval)

        self.backend.resize(self.config.width, self.config.height)
        self.backend.set_camera(self.camera)

    # -- properties -------------------------------------------------------

    @property
    def geometry(self):
        return self.builder.current

    @property
    def point_count(self) -> int:
        return self.point_set.point_count if self.point_set is not None else 0

    @property
    def point_size(self) -> float:
        return self.config.point_size

    @property
    def point_color(self):
        return self.config.point_color

    @property
    def disposed(self) -> bool:
        return self.state is SessionState.DISPOSED

    @property
    def render_loop(self) -> RenderLoop:
        return self._render_loop

    # -- lifecycle --------------------------------------------------------

    def start(self, loop=None) -> None:
        """Start the render loop; it keeps running until ``dispose``."""
        self._check_alive()
        self._render_loop.start(loop)

    def frame(self) -> bool:
        """
        One render-loop iteration: advance damping, then present.

        Returns:
            bool: False when the loop should end
        """
        if self.disposed:
            return False
        if self.controls.update():
            self.backend.set_camera(self.camera)
        if self.geometry is None:
            return True
        if not self.backend.present():
            logger.info("Render surface closed")
            return False
        return True

    def dispose(self) -> None:
        """Stop the render loop and release every resource. Later calls do nothing."""
        if self.disposed:
            return
        # Invalidate loads still in flight
        self._load_seq += 1
        try:
            self._render_loop.stop()
        finally:
            try:
                self.builder.release(self.backend)
            finally:
                self.backend.close()
                self.point_set = None
                self.tooltip = None
                self.listener = SessionListener()
                self.state = SessionState.DISPOSED
                logger.debug("Viewer session disposed")

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.dispose()

    def _check_alive(self):
        if self.disposed:
            raise RuntimeError("ViewerSession has been disposed")

    # -- loading ----------------------------------------------------------

    async def load(self, data: bytes, file_name: str = '') -> bool:
        """
        Decompress if needed, parse, and install a file's points.

        A load started later always wins: if another ``load`` begins before
        this one finishes, this one's result is dropped.

        Returns:
            bool: True if this load was installed
        """
        self._check_alive()
        self._load_seq += 1
        token = self._load_seq
        self.state = SessionState.LOADING
        logger.info(f"Loading {file_name or '<bytes>'} ({len(data)} bytes)")
        self.listener.on_load_start(file_name)

        try:
            point_set = await self._decode(data, file_name)
        except (FormatError, DecompressionError) as e:
            if token != self._load_seq:
                logger.debug(f"Ignoring failure of superseded load {file_name}: {e}")
                return False
            self._fail(file_name, str(e))
            return False
        except Exception:
            if token == self._load_seq:
                self._restore_state()
            raise

        if token != self._load_seq:
            logger.debug(f"Discarding superseded load of {file_name}")
            return False
        self._install(point_set, file_name)
        return True

    async def load_file(self, path) -> bool:
        """Read ``path`` and ``load`` it under its base name."""
        path = Path(path)
        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(None, path.read_bytes)
        return await self.load(data, path.name)

    async def _decode(self, data, file_name) -> PointSet:
        loop = asyncio.get_running_loop()
        if needs_decompression(file_name):
            data = await self._decompress(data)
        return await loop.run_in_executor(None, parse, data, file_name)

    async def _decompress(self, data):
        try:
            if inspect.iscoroutinefunction(self.decompress):
                return await self.decompress(data)
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self.decompress, data)
        except DecompressionError:
            raise
        except Exception as e:
            raise DecompressionError(f"Decompression failed: {e}") from e

    def _install(self, point_set: PointSet, file_name: str) -> None:
        # The previous geometry stays installed until the new one is attached
        geometry = build_geometry(point_set, self.builder.default_color)
        try:
            geometry.apply_uniform_color(self.point_color)
            geometry.handle = self.backend.attach(geometry, self.point_size)
        except Exception:
            geometry.release(self.backend)
            self._restore_state()
            raise
        self.builder.adopt(geometry, self.backend)

        self.point_set = point_set
        self.file_name = file_name
        self.tooltip = None
        self.last_error = None
        self._fit()
        self.state = SessionState.READY
        logger.info(f"Loaded {point_set.point_count} points from {file_name or '<bytes>'}")
        self.listener.on_load_success(point_set.point_count, file_name)

    def _fail(self, file_name, message):
        self.last_error = message
        self.state = SessionState.ERROR
        logger.error(f"Error loading PCD file {file_name or '<bytes>'}: {message}")
        self.listener.on_load_error(message)
        self._restore_state()

    def _restore_state(self):
        self.state = SessionState.READY if self.point_set is not None else SessionState.EMPTY

    # -- camera -----------------------------------------------------------

    def _fit(self):
        self.camera = fit_camera(self.point_set, self.camera)
        self.controls.camera = self.camera
        self.controls.reset_motion()
        self.backend.set_camera(self.camera)

    def reset_camera(self) -> bool:
        """Frame the loaded points again. Does nothing without a loaded set."""
        self._check_alive()
        if self.point_set is None or self.point_set.point_count == 0:
            return False
        self._fit()
        return True

    def zoom_in(self, step=1.0) -> None:
        self._check_alive()
        self.controls.zoom_in(step)
        self.backend.set_camera(self.camera)

    def zoom_out(self, step=1.0) -> None:
        self._check_alive()
        self.controls.zoom_out(step)
        self.backend.set_camera(self.camera)

    def resize(self, width: int, height: int) -> None:
        """Follow a new surface size: projection aspect and backend surface only."""
        self._check_alive()
        if width <= 0 or height <= 0:
            raise ValueError(f"Viewport must be positive, got {width}x{height}")
        self.config = replace(self.config, width=int(width), height=int(height))
        self.camera.aspect = width / height
        self.backend.resize(self.config.width, self.config.height)
        self.backend.set_camera(self.camera)

    # -- display parameters -----------------------------------------------

    def set_point_size(self, size: float) -> None:
        self._check_alive()
        size = clamp_point_size(size)
        self.config = replace(self.config, point_size=size)
        self.backend.set_point_size(size)

    def set_point_color(self, color) -> bool:
        """
        Change the uniform point color.

        Returns:
            bool: False when the loaded file has its own colors and nothing changed
        """
        self._check_alive()
        color = parse_color(color)
        self.config = replace(self.config, point_color=color)
        geometry = self.geometry
        if geometry is None or not geometry.apply_uniform_color(color):
            return False
        self.backend.update_colors(geometry.handle, geometry)
        return True

    # -- pointer ----------------------------------------------------------

    def pointer_move(self, x: float, y: float) -> Optional[TooltipPayload]:
        """
        Pick the point under surface pixel (x, y) and report it.

        Returns:
            TooltipPayload, or None when nothing is within reach
        """
        self._check_alive()
        payload = None
        if self.geometry is not None and self.point_set is not None:
            ndc = screen_to_ndc(x, y, self.config.width, self.config.height)
            point = pick(ndc, self.camera, self.geometry, self.point_set, pick_tolerance(self.point_size))
            if point is not None:
                payload = TooltipPayload(x, y, point)
        self.tooltip = payload
        self.listener.on_hover(payload)
        return payload

    def pointer_leave(self) -> None:
        self._check_alive()
        self.tooltip = None
        self.listener.on_hover(None)
