"""
Exception types raised while loading point cloud files.
"""


class PcdViewerError(Exception):
    """Base class for every error the viewer reports to its caller."""


class FormatError(PcdViewerError, ValueError):
    """The byte stream is not a PCD file this package can decode."""


class DecompressionError(PcdViewerError):
    """The compressed container could not be unpacked."""
