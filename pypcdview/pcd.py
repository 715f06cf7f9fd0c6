"""
PCD (Point Cloud Data) reader and ASCII writer.

A PCD file is a text header ending with a ``DATA ascii`` or ``DATA binary``
line, followed by the point records. Binary records are little-endian and
tightly packed per the header's SIZE and COUNT arrays.
"""
import math
from typing import List, Optional

import numpy as np

from .errors import FormatError
from .logger import get_logger
from .pointcloud import PointSet
from .utils import float_bits_to_uint32, pack_rgb, packed_values_to_uint32, unpack_rgb

ENCODINGS = ('ascii', 'binary')

# (TYPE, SIZE) -> little-endian numpy type
_NUMPY_TYPES = {
    ('F', 4): '<f4',
    ('F', 8): '<f8',
    ('U', 1): 'u1',
    ('U', 2): '<u2',
    ('U', 4): '<u4',
    ('I', 1): 'i1',
    ('I', 2): '<i2',
    ('I', 4): '<i4',
}


class PcdHeader:
    def __init__(self):
        self.version: Optional[str] = None
        self.fields: List[str] = []
        self.size: List[int] = []
        self.type: List[str] = []
        self.count: List[int] = []
        self.width: Optional[int] = None
        self.height: Optional[int] = None
        self.viewpoint: Optional[List[float]] = None
        self.points: int = 0
        self.data: Optional[str] = None
        # Encoded length of the header, trailing newline of the DATA line included
        self.byte_length: int = 0

    @property
    def encoding(self) -> Optional[str]:
        return self.data

    def __repr__(self):
        return (f"PcdHeader(fields={self.fields}, size={self.size}, type={self.type}, "
                f"count={self.count}, points={self.points}, data={self.data!r})")


class FieldSchema:
    """
    Field layout resolved once per header.

    ``columns`` is one ``(name, offset, size, type, count)`` tuple per field,
    in file order. ``index`` maps the names decoding cares about (x, y, z,
    rgb, r, g, b) to a column number, so records are read by position only.
    """
    TRACKED = ('x', 'y', 'z', 'rgb', 'r', 'g', 'b')

    def __init__(self, header: PcdHeader):
        self.columns = []
        offset = 0
        for name, size, type_, count in zip(header.fields, header.size, header.type, header.count):
            self.columns.append((name, offset, size, type_, count))
            offset += size * count
        self.stride = offset

        self.index = {}
        for name in self.TRACKED:
            if name in header.fields:
                self.index[name] = header.fields.index(name)

        # ASCII token column of each field: COUNT widens the row
        self.token_columns = []
        column = 0
        for _, _, _, _, count in self.columns:
            self.token_columns.append(column)
            column += count

    @property
    def has_xyz(self) -> bool:
        return all(n in self.index for n in ('x', 'y', 'z'))

    @property
    def color_source(self) -> Optional[str]:
        """'rgb' for a packed color, 'separate' for r/g/b fields, or None."""
        if 'rgb' in self.index:
            return 'rgb'
        if all(n in self.index for n in ('r', 'g', 'b')):
            return 'separate'
        return None

    def numpy_dtype(self):
        """Structured dtype for one binary record; fields are named f0, f1, ..."""
        names, formats, offsets = [], [], []
        for j, (name, offset, size, type_, count) in enumerate(self.columns):
            try:
                base = _NUMPY_TYPES[(type_, size)]
            except KeyError:
                raise FormatError(
                    f"Unsupported field type {type_}{size} for field '{name}'") from None
            names.append(f"f{j}")
            formats.append(base if count == 1 else (base, (count,)))
            offsets.append(offset)
        return np.dtype({'names': names, 'formats': formats,
                         'offsets': offsets, 'itemsize': self.stride})


def _ints(tokens, key):
    try:
        return [int(t) for t in tokens]
    except ValueError:
        raise FormatError(f"Invalid integer in {key} line: {' '.join(tokens)}") from None


def parse_header(data: bytes) -> PcdHeader:
    """
    Read the header up to and including the first DATA line.

    Raises:
        FormatError: no DATA line, bad or negative numbers, or
            FIELDS/SIZE/TYPE/COUNT of different lengths
    """
    header = PcdHeader()
    count_seen = False
    position = 0
    found_data = False

    while position < len(data):
        end = data.find(b'\n', position)
        next_position = len(data) if end == -1 else end + 1
        line = data[position:next_position].decode('ascii', errors='replace').strip()
        position = next_position

        if not line or line.startswith('#'):
            continue
        tokens = line.split()
        key, values = tokens[0].upper(), tokens[1:]

        if key == 'VERSION':
            header.version = values[0] if values else None
        elif key == 'FIELDS':
            header.fields = values
        elif key == 'SIZE':
            header.size = _ints(values, key)
        elif key == 'TYPE':
            header.type = [v.upper() for v in values]
        elif key == 'COUNT':
            header.count = _ints(values, key)
            count_seen = True
        elif key == 'WIDTH':
            header.width = _ints(values[:1], key)[0] if values else None
        elif key == 'HEIGHT':
            header.height = _ints(values[:1], key)[0] if values else None
        elif key == 'VIEWPOINT':
            try:
                header.viewpoint = [float(v) for v in values]
            except ValueError:
                raise FormatError(f"Invalid VIEWPOINT line: {line}") from None
        elif key == 'POINTS':
            header.points = _ints(values[:1], key)[0] if values else 0
        elif key == 'DATA':
            header.data = values[0].lower() if values else ''
            header.byte_length = position
            found_data = True
            break

    if not found_data:
        raise FormatError("Invalid PCD file: DATA section not found")

    if not count_seen:
        header.count = [1] * len(header.fields)
    if not (len(header.fields) == len(header.size) == len(header.type) == len(header.count)):
        raise FormatError(
            f"Header arrays differ in length: FIELDS={len(header.fields)}, SIZE={len(header.size)}, "
            f"TYPE={len(header.type)}, COUNT={len(header.count)}")
    if any(v < 0 for v in header.size + header.count):
        raise FormatError(f"Negative SIZE or COUNT: SIZE={header.size}, COUNT={header.count}")
    if header.points == 0 and header.width is not None and header.height is not None:
        header.points = header.width * header.height
    if header.points < 0:
        raise FormatError(f"Invalid point count: {header.points}")
    return header


def _colors_from_packed(values):
    return unpack_rgb(packed_values_to_uint32(values) & 0xFFFFFF)


def _decode_ascii(data: bytes, header: PcdHeader, schema: FieldSchema):
    logger = get_logger(__name__)
    body = data[header.byte_length:].decode('ascii', errors='replace')

    if schema.has_xyz:
        xyz_columns = [schema.token_columns[schema.index[n]] for n in ('x', 'y', 'z')]
    else:
        xyz_columns = [0, 1, 2]
    source = schema.color_source
    if source == 'rgb':
        color_columns = [schema.token_columns[schema.index['rgb']]]
    elif source == 'separate':
        color_columns = [schema.token_columns[schema.index[n]] for n in ('r', 'g', 'b')]
    else:
        color_columns = []

    positions, raw_colors, has_color = [], [], []
    skipped = 0
    for line in body.splitlines():
        tokens = line.split()
        if len(tokens) < 3:
            if tokens:
                skipped += 1
            continue
        values = []
        for token in tokens:
            try:
                values.append(float(token))
            except ValueError:
                values.append(math.nan)
        if max(xyz_columns) >= len(values):
            skipped += 1
            continue
        xyz = [values[c] for c in xyz_columns]
        if not all(math.isfinite(v) for v in xyz):
            skipped += 1
            continue
        positions.append(xyz)

        if color_columns and max(color_columns) < len(values):
            channel_values = [values[c] for c in color_columns]
            if all(math.isfinite(v) for v in channel_values):
                raw_colors.append(channel_values)
                has_color.append(True)
                continue
        raw_colors.append([0.0] * max(len(color_columns), 1))
        has_color.append(False)

    if skipped:
        logger.warning(f"Skipped {skipped} ASCII rows without three finite coordinates")

    positions = np.array(positions, dtype=np.float64).reshape(-1, 3)
    mask = np.array(has_color, dtype=bool)
    colors = np.zeros((len(positions), 3), dtype=np.float64)
    if source and len(positions):
        raw = np.array(raw_colors, dtype=np.float64)
        if source == 'rgb':
            colors[mask] = _colors_from_packed(raw[mask, 0])
        else:
            colors[mask] = raw[mask] / 255.0

    if header.points and header.points != len(positions):
        logger.debug(f"Header declares {header.points} points, ASCII body holds {len(positions)}")
    return positions, colors, mask


def _first_element(records, schema, name):
    j = schema.index[name]
    values = records[f"f{j}"]
    if values.ndim > 1:
        values = values[:, 0]
    return values


def _decode_binary(data: bytes, header: PcdHeader, schema: FieldSchema):
    logger = get_logger(__name__)
    n = header.points
    required = header.byte_length + n * schema.stride
    if required > len(data):
        raise FormatError(
            f"Binary body too short: need {required} bytes for {n} points of {schema.stride} bytes, "
            f"have {len(data)}")
    if n and schema.stride == 0:
        raise FormatError("Binary PCD declares points but no fields")

    if n == 0:
        empty = np.zeros((0, 3), dtype=np.float64)
        return empty, empty.copy(), np.zeros(0, dtype=bool)
    dtype = schema.numpy_dtype()
    records = np.frombuffer(data, dtype=dtype, count=n, offset=header.byte_length)

    positions = np.zeros((n, 3), dtype=np.float64)
    for axis, name in enumerate(('x', 'y', 'z')):
        if name in schema.index:
            positions[:, axis] = _first_element(records, schema, name)

    colors = np.zeros((n, 3), dtype=np.float64)
    mask = np.zeros(n, dtype=bool)
    source = schema.color_source
    if source == 'rgb':
        _, _, size, type_, _ = schema.columns[schema.index['rgb']]
        packed = _first_element(records, schema, 'rgb')
        if type_ == 'F' and size == 4:
            packed = float_bits_to_uint32(packed)
        elif type_ == 'F':
            packed = packed_values_to_uint32(packed)
        else:
            packed = (packed.astype(np.int64) & 0xFFFFFF).astype(np.uint32)
        colors = unpack_rgb(packed & 0xFFFFFF)
        mask[:] = True
    elif source == 'separate':
        for axis, name in enumerate(('r', 'g', 'b')):
            colors[:, axis] = _first_element(records, schema, name).astype(np.float64) / 255.0
        mask[:] = True

    finite = np.all(np.isfinite(positions), axis=1)
    if not np.all(finite):
        dropped = int(n - finite.sum())
        logger.warning(f"Dropped {dropped} binary records with non-finite coordinates")
        positions, colors, mask = positions[finite], colors[finite], mask[finite]

    extra = len(data) - required
    if extra:
        logger.debug(f"Ignoring {extra} trailing bytes after {n} binary records")
    return positions, colors, mask


def parse(data: bytes, file_name: str = '') -> PointSet:
    """
    Decode an (already decompressed) PCD byte stream.

    Args:
        data: raw file contents
        file_name: carried onto the returned PointSet
    Returns:
        PointSet in file order
    Raises:
        FormatError: the header is malformed, the encoding is not ascii or
            binary, or a binary body is shorter than the header declares
    """
    logger = get_logger(__name__)
    data = bytes(data)
    header = parse_header(data)
    logger.debug(f"{file_name or '<bytes>'}: {header}")

    if header.data not in ENCODINGS:
        raise FormatError(f"Unsupported PCD data type: {header.data}")

    schema = FieldSchema(header)
    if header.data == 'ascii':
        positions, colors, mask = _decode_ascii(data, header, schema)
    else:
        positions, colors, mask = _decode_binary(data, header, schema)

    return PointSet(positions, colors, mask, file_name=file_name)


def write_ascii(point_set: PointSet) -> bytes:
    """
    Serialise a PointSet as an ASCII PCD file.

    A packed ``rgb`` column is written when any point has a color; points
    without one are written as white.
    """
    n = point_set.point_count
    with_color = point_set.has_colors
    fields = ['x', 'y', 'z'] + (['rgb'] if with_color else [])
    header = [
        '# .PCD v0.7 - Point Cloud Data file format',
        'VERSION 0.7',
        'FIELDS ' + ' '.join(fields),
        'SIZE ' + ' '.join(['4'] * len(fields)),
        'TYPE ' + ' '.join(['F', 'F', 'F'] + (['U'] if with_color else [])),
        'COUNT ' + ' '.join(['1'] * len(fields)),
        f'WIDTH {n}',
        'HEIGHT 1',
        'VIEWPOINT 0 0 0 1 0 0 0',
        f'POINTS {n}',
        'DATA ascii',
    ]
    lines = header
    positions = point_set.positions.tolist()
    if with_color:
        colors = np.where(point_set.color_mask[:, None], point_set.colors, 1.0)
        for (x, y, z), rgb in zip(positions, pack_rgb(colors).tolist()):
            lines.append(f"{x!r} {y!r} {z!r} {rgb}")
    else:
        for x, y, z in positions:
            lines.append(f"{x!r} {y!r} {z!r}")
    return ('\n'.join(lines) + '\n').encode('ascii')
