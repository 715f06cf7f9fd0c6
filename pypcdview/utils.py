"""
Utility functions for color packing and conversion.
"""
import numpy as np

WHITE = (1.0, 1.0, 1.0)


def unpack_rgb(packed):
    """
    Split packed 24-bit colors into normalised channels.
    Args:
        packed: (N,) array of integers, red in bits 16-23, green 8-15, blue 0-7
    Returns:
        (N, 3) float64 array with channels in [0, 1]
    """
    packed = np.asarray(packed, dtype=np.uint32)
    channels = np.stack([(packed >> 16) & 0xFF, (packed >> 8) & 0xFF, packed & 0xFF], axis=1)
    return channels.astype(np.float64) / 255.0


def pack_rgb(colors):
    """
    Inverse of unpack_rgb.
    Args:
        colors: (N, 3) array with channels in [0, 1]
    Returns:
        (N,) uint32 array
    """
    channels = np.clip(np.rint(np.asarray(colors, dtype=np.float64) * 255.0), 0, 255).astype(np.uint32)
    return (channels[:, 0] << 16) | (channels[:, 1] << 8) | channels[:, 2]


def float_bits_to_uint32(values):
    """Reinterpret float32 values as the uint32 bit patterns they were stored with."""
    return np.ascontiguousarray(values, dtype=np.float32).view(np.uint32)


def packed_values_to_uint32(values):
    """
    Turn numbers read from a packed ``rgb`` column into 24-bit integers.

    Whole numbers are taken at face value. Anything else is assumed to be
    the float32 bit pattern PCL writes for packed colors.
    """
    values = np.asarray(values, dtype=np.float64)
    result = np.zeros(values.shape, dtype=np.uint32)
    whole = np.isfinite(values) & (values == np.floor(values)) & (values >= 0) & (values < 2 ** 32)
    result[whole] = values[whole].astype(np.uint32)
    rest = ~whole & np.isfinite(values)
    if np.any(rest):
        result[rest] = float_bits_to_uint32(values[rest])
    return result


def parse_color(value):
    """
    Accept '#rrggbb', 'rrggbb', or an RGB triple in [0, 1]; return a float tuple.
    """
    if isinstance(value, str):
        text = value.strip().lstrip('#')
        if len(text) != 6:
            raise ValueError(f"Expected a '#rrggbb' color, got {value!r}")
        try:
            raw = int(text, 16)
        except ValueError:
            raise ValueError(f"Expected a '#rrggbb' color, got {value!r}") from None
        return tuple(float(c) for c in unpack_rgb([raw])[0])

    triple = tuple(float(c) for c in value)
    if len(triple) != 3:
        raise ValueError(f"Expected three color channels, got {len(triple)}")
    if any(not 0.0 <= c <= 1.0 for c in triple):
        raise ValueError(f"Color channels must lie in [0, 1], got {triple}")
    return triple


def color_to_hex(color):
    """(r, g, b) in [0, 1] -> '#rrggbb'."""
    return '#{:06x}'.format(int(pack_rgb([color])[0]))


def color_to_bytes(color):
    """(r, g, b) in [0, 1] -> (R, G, B) in 0..255, rounded like the tooltip shows it."""
    return tuple(int(round(c * 255)) for c in color)
