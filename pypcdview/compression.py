"""
Decompression used before parsing compressed uploads (``.pcd.gz``).
"""
import gzip
import zlib

from .errors import DecompressionError

COMPRESSED_SUFFIXES = ('.gz',)


def needs_decompression(file_name):
    """True when the file name says the bytes are a gzip container."""
    return str(file_name).lower().endswith(COMPRESSED_SUFFIXES)


def gunzip(data):
    """
    Inflate a gzip stream.

    Raises:
        DecompressionError: the bytes are not a valid gzip stream
    """
    try:
        return gzip.decompress(bytes(data))
    except (OSError, EOFError, zlib.error) as e:
        raise DecompressionError(f"Could not decompress gzip data: {e}") from e
