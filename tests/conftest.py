import struct

import pytest

from pypcdview.backend import HeadlessBackend
from pypcdview.config import ViewerConfig
from pypcdview.session import SessionListener, ViewerSession


def ascii_pcd(rows, fields=('x', 'y', 'z'), size=None, type_=None, count=None):
    """Assemble an ASCII PCD file from rows of already formatted values."""
    n = len(rows)
    size = size or ['4'] * len(fields)
    type_ = type_ or ['F'] * len(fields)
    header = [
        '# .PCD v0.7 - Point Cloud Data file format',
        'VERSION 0.7',
        'FIELDS ' + ' '.join(fields),
        'SIZE ' + ' '.join(str(s) for s in size),
        'TYPE ' + ' '.join(type_),
    ]
    if count is not None:
        header.append('COUNT ' + ' '.join(str(c) for c in count))
    header += [f'WIDTH {n}', 'HEIGHT 1', 'VIEWPOINT 0 0 0 1 0 0 0', f'POINTS {n}', 'DATA ascii']
    body = [' '.join(str(v) for v in row) for row in rows]
    return ('\n'.join(header + body) + '\n').encode('ascii')


def binary_pcd(fields, size, type_, fmt, records, count=None, points=None):
    """Assemble a binary PCD file; ``fmt`` is the struct format of one record (no byte order)."""
    n = len(records) if points is None else points
    count = count or [1] * len(fields)
    header = '\n'.join([
        'VERSION 0.7',
        'FIELDS ' + ' '.join(fields),
        'SIZE ' + ' '.join(str(s) for s in size),
        'TYPE ' + ' '.join(type_),
        'COUNT ' + ' '.join(str(c) for c in count),
        f'WIDTH {n}',
        'HEIGHT 1',
        f'POINTS {n}',
        'DATA binary',
    ]) + '\n'
    body = b''.join(struct.pack('<' + fmt, *record) for record in records)
    return header.encode('ascii') + body


class RecordingListener(SessionListener):
    def __init__(self):
        self.events = []

    def on_load_start(self, file_name):
        self.events.append(('start', file_name))

    def on_load_success(self, point_count, file_name):
        self.events.append(('success', point_count, file_name))

    def on_load_error(self, message):
        self.events.append(('error', message))

    def on_hover(self, payload):
        self.events.append(('hover', payload))

    def names(self):
        return [event[0] for event in self.events]


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def backend():
    return HeadlessBackend()


@pytest.fixture
def session(backend, listener):
    session = ViewerSession(backend, ViewerConfig(frame_interval=0.001), listener=listener)
    yield session
    session.dispose()


# Bounding box [0,0,0]-[10,0,0] whose center (5,0,0) is itself a point
LINE_ROWS = [(0, 0, 0), (10, 0, 0), (5, 0, 0)]
