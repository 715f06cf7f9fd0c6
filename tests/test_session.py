import asyncio
import gzip

import pytest

from pypcdview.backend import HeadlessBackend
from pypcdview.config import ViewerConfig
from pypcdview.pointcloud import Point
from pypcdview.session import SessionState, ViewerSession

from conftest import LINE_ROWS, RecordingListener, ascii_pcd, binary_pcd

CLOUD_A = ascii_pcd([(0, 0, 0), (1, 1, 1)])
CLOUD_B = ascii_pcd(LINE_ROWS)
BAD = b'FIELDS x y z\nSIZE 4 4 4\nTYPE F F F\n1 2 3\n'


@pytest.mark.asyncio
async def test_load_installs_points_and_fits_camera(session, listener, backend):
    assert session.state is SessionState.EMPTY

    assert await session.load(CLOUD_B, 'line.pcd')

    assert session.state is SessionState.READY
    assert session.point_count == 3
    assert session.file_name == 'line.pcd'
    assert session.camera.target.tolist() == [5.0, 0.0, 0.0]
    assert session.camera.position.tolist() == [20.0, 15.0, 15.0]
    assert backend.camera == session.camera
    assert list(backend.handles) == [session.geometry.handle]
    assert listener.events == [('start', 'line.pcd'), ('success', 3, 'line.pcd')]


@pytest.mark.asyncio
async def test_replacing_a_file_releases_previous_geometry(session, backend):
    await session.load(CLOUD_A, 'a.pcd')
    first = session.geometry

    await session.load(CLOUD_B, 'b.pcd')

    assert first.released
    assert len(backend.handles) == 1
    assert session.geometry is not first
    assert session.point_count == 3


@pytest.mark.asyncio
async def test_gzip_file_is_decompressed(session):
    assert await session.load(gzip.compress(CLOUD_B), 'line.pcd.gz')
    assert session.point_count == 3
    assert session.file_name == 'line.pcd.gz'


@pytest.mark.asyncio
async def test_binary_file_loads(session):
    data = binary_pcd(['x', 'y', 'z', 'rgb'], [4, 4, 4, 4], ['F', 'F', 'F', 'U'], 'fffI',
                      [(1.0, 2.0, 3.0, 0xFF0000)])
    assert await session.load(data, 'one.pcd')
    assert session.point_set[0] == Point(1.0, 2.0, 3.0, (1.0, 0.0, 0.0))
    assert session.geometry.has_explicit_colors


@pytest.mark.asyncio
async def test_format_error_keeps_previous_file(session, listener, backend):
    await session.load(CLOUD_A, 'a.pcd')
    geometry = session.geometry

    assert not await session.load(BAD, 'bad.pcd')

    assert session.state is SessionState.READY
    assert session.file_name == 'a.pcd'
    assert session.geometry is geometry
    assert not geometry.released
    assert 'DATA' in session.last_error
    assert listener.events[-1][0] == 'error'
    assert listener.names() == ['start', 'success', 'start', 'error']


@pytest.mark.asyncio
async def test_format_error_without_previous_file_returns_to_empty(session):
    assert not await session.load(BAD, 'bad.pcd')
    assert session.state is SessionState.EMPTY
    assert session.geometry is None


@pytest.mark.asyncio
async def test_decompression_error_is_reported_like_format_error(session, listener):
    await session.load(CLOUD_A, 'a.pcd')
    assert not await session.load(b'definitely not gzip', 'broken.pcd.gz')
    assert session.state is SessionState.READY
    assert session.file_name == 'a.pcd'
    assert listener.events[-1][0] == 'error'


@pytest.mark.asyncio
async def test_failed_decompressor_is_wrapped():
    def explode(data):
        raise ValueError("bad block")

    listener = RecordingListener()
    session = ViewerSession(decompress=explode, listener=listener)
    assert not await session.load(b'...', 'x.pcd.gz')
    assert 'bad block' in listener.events[-1][1]
    session.dispose()


@pytest.mark.asyncio
async def test_later_load_wins_when_earlier_finishes_last():
    gate = asyncio.Event()

    async def slow_gunzip(data):
        await gate.wait()
        return gzip.decompress(data)

    listener = RecordingListener()
    session = ViewerSession(decompress=slow_gunzip, listener=listener)

    load_a = asyncio.ensure_future(session.load(gzip.compress(CLOUD_A), 'a.pcd.gz'))
    await asyncio.sleep(0)
    assert session.state is SessionState.LOADING

    assert await session.load(CLOUD_B, 'b.pcd')
    gate.set()
    assert not await load_a

    assert session.state is SessionState.READY
    assert session.file_name == 'b.pcd'
    assert session.point_count == 3
    assert ('success', 2, 'a.pcd.gz') not in listener.events
    session.dispose()


@pytest.mark.asyncio
async def test_later_load_wins_when_earlier_finishes_first(session):
    load_a = asyncio.ensure_future(session.load(CLOUD_A, 'a.pcd'))
    load_b = asyncio.ensure_future(session.load(CLOUD_B, 'b.pcd'))
    results = await asyncio.gather(load_a, load_b)

    assert results[1]
    assert session.file_name == 'b.pcd'
    assert session.point_count == 3


@pytest.mark.asyncio
async def test_stale_failure_does_not_touch_state():
    gate = asyncio.Event()

    async def slow_gunzip(data):
        await gate.wait()
        return b'garbage'

    listener = RecordingListener()
    session = ViewerSession(decompress=slow_gunzip, listener=listener)
    load_a = asyncio.ensure_future(session.load(b'...', 'a.pcd.gz'))
    await asyncio.sleep(0)
    await session.load(CLOUD_B, 'b.pcd')
    gate.set()

    assert not await load_a
    assert session.last_error is None
    assert 'error' not in listener.names()
    session.dispose()


@pytest.mark.asyncio
async def test_reset_refits_after_navigation(session):
    await session.load(CLOUD_B, 'line.pcd')
    fitted = session.camera.copy()
    session.zoom_in(3.0)
    assert session.camera != fitted

    assert session.reset_camera()
    assert session.camera == fitted


def test_reset_without_points_does_nothing():
    session = ViewerSession()
    before = session.camera.copy()
    assert not session.reset_camera()
    assert session.camera == before
    session.dispose()


@pytest.mark.asyncio
async def test_point_color_applies_only_without_file_colors(session, backend):
    await session.load(CLOUD_B, 'line.pcd')
    assert session.set_point_color('#ff0000')
    assert session.geometry.colors_rgb()[0].tolist() == [1.0, 0.0, 0.0]
    assert backend.color_uploads == 1

    colored = ascii_pcd([(0, 0, 0, 0x00FF00)], fields=('x', 'y', 'z', 'rgb'))
    await session.load(colored, 'colored.pcd')
    assert not session.set_point_color('#0000ff')
    assert session.geometry.colors_rgb()[0].tolist() == [0.0, 1.0, 0.0]


@pytest.mark.asyncio
async def test_point_color_is_applied_to_next_file(session):
    session.set_point_color((0.0, 0.0, 1.0))
    await session.load(CLOUD_A, 'a.pcd')
    assert session.geometry.colors_rgb()[1].tolist() == [0.0, 0.0, 1.0]


@pytest.mark.asyncio
async def test_point_size_is_clamped_and_forwarded(session, backend):
    await session.load(CLOUD_A, 'a.pcd')
    camera = session.camera.copy()
    session.set_point_size(25)
    assert session.point_size == 10.0
    assert backend.point_size == 10.0
    assert session.camera == camera


@pytest.mark.asyncio
async def test_hover_reports_point_under_cursor(session, listener):
    await session.load(CLOUD_B, 'line.pcd')

    payload = session.pointer_move(400, 300)

    assert payload.point == Point(5.0, 0.0, 0.0)
    assert (payload.screen_x, payload.screen_y) == (400, 300)
    assert listener.events[-1] == ('hover', payload)

    assert session.pointer_move(5, 5) is None
    assert session.tooltip is None

    session.pointer_move(400, 300)
    session.pointer_leave()
    assert session.tooltip is None
    assert listener.events[-1] == ('hover', None)


@pytest.mark.asyncio
async def test_resize_updates_aspect_without_reloading(session, backend):
    await session.load(CLOUD_B, 'line.pcd')
    geometry = session.geometry
    session.resize(1000, 500)
    assert session.camera.aspect == 2.0
    assert backend.size == (1000, 500)
    assert session.geometry is geometry
    # Screen center still maps to the fitted target
    assert session.pointer_move(500, 250).point == Point(5.0, 0.0, 0.0)


@pytest.mark.asyncio
async def test_render_loop_presents_only_with_geometry(session, backend):
    session.start()
    await asyncio.sleep(0.02)
    assert backend.frames == 0

    await session.load(CLOUD_A, 'a.pcd')
    await asyncio.sleep(0.02)
    assert backend.frames > 0
    assert session.render_loop.running


@pytest.mark.asyncio
async def test_dispose_stops_loop_and_releases_everything(backend, listener):
    session = ViewerSession(backend, ViewerConfig(frame_interval=0.001), listener=listener)
    session.start()
    await session.load(CLOUD_A, 'a.pcd')
    geometry = session.geometry
    await asyncio.sleep(0.01)

    session.dispose()
    frames = backend.frames
    await asyncio.sleep(0.01)

    assert backend.frames == frames
    assert not session.render_loop.running
    assert geometry.released
    assert backend.closed
    assert session.state is SessionState.DISPOSED

    session.dispose()
    with pytest.raises(RuntimeError):
        await session.load(CLOUD_A, 'a.pcd')


@pytest.mark.asyncio
async def test_dispose_during_load_discards_result(backend):
    gate = asyncio.Event()

    async def slow_gunzip(data):
        await gate.wait()
        return gzip.decompress(data)

    session = ViewerSession(backend, decompress=slow_gunzip)
    pending = asyncio.ensure_future(session.load(gzip.compress(CLOUD_A), 'a.pcd.gz'))
    await asyncio.sleep(0)
    session.dispose()
    gate.set()

    assert not await pending
    assert backend.handles == {}


@pytest.mark.asyncio
async def test_closed_window_ends_render_loop(session, backend):
    session.start()
    await session.load(CLOUD_A, 'a.pcd')
    backend.closed = True
    await asyncio.sleep(0.02)
    assert not session.render_loop.running


@pytest.mark.asyncio
async def test_context_manager_starts_and_disposes(backend):
    async with ViewerSession(backend, ViewerConfig(frame_interval=0.001)) as session:
        assert session.render_loop.running
    assert session.disposed
    assert backend.closed


@pytest.mark.asyncio
async def test_load_file_uses_base_name(session, tmp_path):
    path = tmp_path / 'scan.pcd.gz'
    path.write_bytes(gzip.compress(CLOUD_B))
    assert await session.load_file(path)
    assert session.file_name == 'scan.pcd.gz'
    assert session.point_count == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("rows", [[(1, 2, 3)], [(1, 2, 3), (1, 2, 3)]])
async def test_hover_over_cloud_at_a_single_location(session, rows):
    assert await session.load(ascii_pcd(rows), 'one.pcd')
    assert session.camera.target.tolist() == [1.0, 2.0, 3.0]
    assert session.camera.distance >= session.camera.min_distance

    payload = session.pointer_move(400, 300)

    assert payload.point == Point(1.0, 2.0, 3.0)


class FailingAttachBackend(HeadlessBackend):
    fail = False

    def attach(self, geometry, point_size):
        if self.fail:
            raise RuntimeError("upload failed")
        return super().attach(geometry, point_size)


@pytest.mark.asyncio
async def test_failed_upload_keeps_previous_file():
    backend = FailingAttachBackend()
    session = ViewerSession(backend)
    await session.load(CLOUD_A, 'a.pcd')
    geometry = session.geometry

    backend.fail = True
    with pytest.raises(RuntimeError, match='upload failed'):
        await session.load(CLOUD_B, 'b.pcd')

    assert session.state is SessionState.READY
    assert session.file_name == 'a.pcd'
    assert session.geometry is geometry
    assert not geometry.released
    assert list(backend.handles) == [geometry.handle]
    session.dispose()
