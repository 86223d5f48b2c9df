from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, NamedTuple, TextIO

import numpy as np
import pandas as pd

from gpw_errors import HeaderParseError, IoError

# Fixed header of the GPW / Esri ASCII grid format, in file order.
HEADER_FIELDS = ("ncols", "nrows", "xllcorner", "yllcorner", "cellsize", "NODATA_value")


@dataclass(frozen=True)
class GpwAsciiHeader:
    ncols: int
    nrows: int
    xllcorner: float
    yllcorner: float
    cellsize: float
    nodata_value: float


class GridCell(NamedTuple):
    row: int
    col: int
    value: float


@dataclass
class GpwAscii:
    """
    Parsed grid: header plus a (nrows, ncols) float32 array, NaN where no-data.
    Row 0 is the top (northernmost) row.
    """

    header: GpwAsciiHeader
    data: np.ndarray

    def __len__(self) -> int:
        return int(np.count_nonzero(~np.isnan(self.data)))

    def samples(self) -> Iterator[GridCell]:
        for row, col in np.argwhere(~np.isnan(self.data)):
            yield GridCell(int(row), int(col), float(self.data[row, col]))


def _parse_number(keyword: str, literal: str, integer: bool) -> float | int:
    try:
        if integer:
            return int(literal)
        return float(literal)
    except ValueError:
        raise HeaderParseError(f"Invalid value for {keyword}: {literal!r}") from None


def parse_header(stream: TextIO) -> GpwAsciiHeader:
    """
    Reads exactly six `keyword value` lines from the start of the stream.
    """
    values = {}
    for keyword in HEADER_FIELDS:
        try:
            line = stream.readline()
        except UnicodeDecodeError as e:
            raise HeaderParseError(f"Header is not text: {e}") from None
        if not line:
            raise HeaderParseError(f"Header ended before {keyword}")
        parts = line.split()
        if len(parts) != 2 or parts[0].lower() != keyword.lower():
            raise HeaderParseError(f"Expected '{keyword} <number>', got {line.strip()!r}")
        values[keyword] = _parse_number(keyword, parts[1], integer=keyword in ("ncols", "nrows"))

    if values["ncols"] <= 0 or values["nrows"] <= 0:
        raise HeaderParseError("ncols and nrows must be positive")
    if values["cellsize"] <= 0:
        raise HeaderParseError(f"cellsize must be positive, got {values['cellsize']}")

    return GpwAsciiHeader(
        ncols=values["ncols"],
        nrows=values["nrows"],
        xllcorner=values["xllcorner"],
        yllcorner=values["yllcorner"],
        cellsize=values["cellsize"],
        nodata_value=values["NODATA_value"],
    )


def read_grid(stream: TextIO) -> GpwAscii:
    """
    Parses header and sample block. Samples equal to NODATA_value become NaN.
    """
    header = parse_header(stream)

    try:
        df = pd.read_csv(stream, sep=r"\s+", header=None, dtype=np.float64)
    except pd.errors.EmptyDataError:
        raise HeaderParseError("Grid has no sample rows") from None
    except (pd.errors.ParserError, ValueError) as e:
        raise HeaderParseError(f"Malformed sample block: {e}") from None

    if df.shape != (header.nrows, header.ncols):
        raise HeaderParseError(
            f"Sample block is {df.shape[0]}x{df.shape[1]}, header declares "
            f"{header.nrows}x{header.ncols}"
        )
    # Short rows are padded with NaN by pandas; the format has no such thing.
    if df.isna().to_numpy().any():
        raise HeaderParseError("Sample block has missing values")

    raw = df.to_numpy()
    data = np.where(raw == header.nodata_value, np.nan, raw).astype(np.float32)
    return GpwAscii(header=header, data=data)


def open_grid(path: str | Path) -> GpwAscii:
    path = Path(path)
    try:
        with path.open("r") as f:
            return read_grid(f)
    except OSError as e:
        raise IoError(f"Cannot read grid {path}: {e}") from e
