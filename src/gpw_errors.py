from __future__ import annotations


class GpwH3Error(Exception):
    """
    Base class for every failure that aborts a tessellate/combine run.
    """


class IoError(GpwH3Error):
    """Cannot open, create, read or write a file."""


class HeaderParseError(GpwH3Error):
    """Malformed ASCII grid header or sample block."""


class GeometryError(GpwH3Error):
    """Grid cell footprint is degenerate or rejected by the covering query."""


class TruncatedRecordError(GpwH3Error):
    """Record stream ended in the middle of a record."""


class InvalidCellIdError(GpwH3Error):
    """A decoded 64-bit value is not a valid H3 cell."""


class PathError(GpwH3Error):
    """A source path has no file name to derive an output name from."""
