from __future__ import annotations

import logging
import math
from concurrent.futures import (
    FIRST_COMPLETED,
    Executor,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterator, Optional

import h3
import h3.api.basic_int as h3int
import numpy as np
from h3 import LatLngPoly
from shapely.geometry import Polygon

from gpw_ascii import GpwAscii, GpwAsciiHeader
from gpw_errors import GeometryError
from gpw_settings import TessellateSettings
from h3tess_io import RecordWriter

logger = logging.getLogger(__name__)

ProgressFn = Callable[[int, int], None]

# (covering cells, per-cell value) for one grid sample; no cells when uncovered
Message = tuple[list[int], float]


@dataclass(frozen=True)
class TessellationSummary:
    samples: int
    records: int
    uncovered: int = 0


def _ring_lonlat_to_latlng(ring_coords):
    """
    Shapely rings come as (lon, lat). H3 expects (lat, lon).
    """
    return [(lat, lon) for lon, lat in ring_coords]


def _polygon_to_latlngpoly(poly: Polygon) -> LatLngPoly:
    return LatLngPoly(_ring_lonlat_to_latlng(list(poly.exterior.coords)))


def cell_footprint(header: GpwAsciiHeader, row: int, col: int) -> Polygon:
    """
    Footprint of grid cell (row, col) in degrees. Rows count down from the top.
    Ring: lower-left, lower-right, upper-right, upper-left, lower-left.
    """
    bottom = header.yllcorner + header.cellsize * (header.nrows - row - 1)
    top = bottom + header.cellsize
    left = header.xllcorner + header.cellsize * col
    right = left + header.cellsize

    return Polygon([
        (left, bottom),
        (right, bottom),
        (right, top),
        (left, top),
        (left, bottom),
    ])


def _check_footprint(poly: Polygon, row: int, col: int) -> None:
    left, bottom, right, top = poly.bounds
    if not all(math.isfinite(v) for v in (left, bottom, right, top)):
        raise GeometryError(f"Non-finite footprint for cell ({row}, {col})")
    if poly.is_empty or not poly.is_valid or poly.area <= 0:
        raise GeometryError(f"Degenerate footprint for cell ({row}, {col}): {poly.wkt}")
    if bottom < -90.0 or top > 90.0:
        raise GeometryError(f"Cell ({row}, {col}) extends past a pole: lat {bottom}..{top}")
    if right - left >= 180.0:
        raise GeometryError(f"Cell ({row}, {col}) spans {right - left} degrees of longitude")


def tessellate_cell(resolution: int, header: GpwAsciiHeader, row: int, col: int) -> list[int]:
    """
    H3 cells at `resolution` covering grid cell (row, col), sorted and unique.

    Cells whose centre falls inside the footprint are used, so every H3 cell
    belongs to at most one grid cell. A footprint smaller than a hexagon may
    contain no centre and yields an empty list.
    """
    try:
        poly = cell_footprint(header, row, col)
    except ValueError as e:
        raise GeometryError(f"Cannot build footprint for cell ({row}, {col}): {e}") from e
    _check_footprint(poly, row, col)

    try:
        cells = h3int.polygon_to_cells(_polygon_to_latlngpoly(poly), resolution)
    except (h3.H3BaseException, ValueError) as e:
        raise GeometryError(f"Covering query failed for cell ({row}, {col}): {e}") from e

    return sorted(set(cells))


def split_value(value: float, cells: list[int]) -> float:
    """
    Even split of a sample across its covering cells, in float32 like the
    on-disk value.
    """
    return float(np.float32(value) / np.float32(len(cells)))


def _tessellate_block(
    resolution: int,
    header: GpwAsciiHeader,
    row: int,
    col_start: int,
    values: np.ndarray,
) -> list[Message]:
    """
    Worker: tessellates one row segment. No-data (NaN) samples are skipped;
    samples covering no cell centre produce an empty message.
    """
    messages = []
    for offset in np.flatnonzero(~np.isnan(values)):
        col = col_start + int(offset)
        cells = tessellate_cell(resolution, header, row, col)
        if not cells:
            messages.append(([], 0.0))
            continue
        messages.append((cells, split_value(float(values[offset]), cells)))
    return messages


def _blocks(grid: GpwAscii, block_cols: int) -> Iterator[tuple[int, int, np.ndarray]]:
    ncols = grid.data.shape[1]
    for row in range(grid.data.shape[0]):
        for col_start in range(0, ncols, block_cols):
            values = grid.data[row, col_start:col_start + block_cols]
            if np.isnan(values).all():
                continue
            yield row, col_start, values.copy()


def _make_executor(settings: TessellateSettings) -> Executor:
    if settings.executor == "thread":
        return ThreadPoolExecutor(max_workers=settings.workers)
    return ProcessPoolExecutor(max_workers=settings.workers)


def gen_to_disk(
    grid: GpwAscii,
    dst: BinaryIO,
    settings: Optional[TessellateSettings] = None,
    report_progress: Optional[ProgressFn] = None,
) -> TessellationSummary:
    """
    Tessellates every present sample of `grid` and writes the records to `dst`.

    Row segments are tessellated concurrently; this thread is the only writer
    and writes messages in completion order, so record order is not stable
    between runs. At most `settings.queue_depth` segments are in flight.
    Any worker error aborts the whole grid.
    """
    settings = settings or TessellateSettings()
    writer = RecordWriter(dst)
    total = len(grid)
    done_samples = 0
    uncovered = 0

    logger.info(
        f"Tessellating {total:,} samples at resolution {settings.resolution} "
        f"({settings.workers} {settings.executor} workers)"
    )

    def drain(finished: set[Future]) -> None:
        nonlocal done_samples, uncovered
        for future in finished:
            for cells, value in future.result():
                if not cells:
                    uncovered += 1
                for cell in cells:
                    writer.write(cell, value)
                done_samples += 1
            if report_progress is not None:
                report_progress(done_samples, total)

    executor = _make_executor(settings)
    pending: set[Future] = set()
    try:
        for row, col_start, values in _blocks(grid, settings.block_cols):
            if len(pending) >= settings.queue_depth:
                finished, pending = wait(pending, return_when=FIRST_COMPLETED)
                drain(finished)
            pending.add(
                executor.submit(_tessellate_block, settings.resolution, grid.header, row, col_start, values)
            )
        while pending:
            finished, pending = wait(pending, return_when=FIRST_COMPLETED)
            drain(finished)
    except BaseException:
        executor.shutdown(wait=True, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
    writer.flush()

    if uncovered:
        logger.warning(
            f"{uncovered:,} samples contain no H3 cell centre at resolution "
            f"{settings.resolution} and were not written"
        )
    logger.info(f"Wrote {writer.count:,} records for {done_samples:,} samples")
    return TessellationSummary(samples=done_samples, records=writer.count, uncovered=uncovered)
