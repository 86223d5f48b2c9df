import io
import random

import h3.api.basic_int as h3int
import numpy as np
import pytest

from gpw_ascii import GpwAsciiHeader, read_grid
from gpw_errors import GeometryError
from gpw_settings import TessellateSettings
from h3_combine import HexIndex, SumRule
from h3_tessellate import cell_footprint, gen_to_disk, split_value, tessellate_cell
from h3tess_io import RECORD_SIZE, decode_records

ITALY = GpwAsciiHeader(ncols=3, nrows=3, xllcorner=10.0, yllcorner=45.0, cellsize=0.01, nodata_value=-9999)


def test_footprint_corners_count_rows_from_top():
    poly = cell_footprint(ITALY, row=0, col=1)
    coords = list(poly.exterior.coords)
    # lower-left, lower-right, upper-right, upper-left, lower-left
    assert coords[0] == pytest.approx((10.01, 45.02))
    assert coords[1] == pytest.approx((10.02, 45.02))
    assert coords[2] == pytest.approx((10.02, 45.03))
    assert coords[3] == pytest.approx((10.01, 45.03))
    assert coords[4] == coords[0]

    bottom_row = cell_footprint(ITALY, row=2, col=0)
    assert bottom_row.bounds == pytest.approx((10.0, 45.0, 10.01, 45.01))


def test_tessellate_cell_sorted_unique():
    cells = tessellate_cell(10, ITALY, 1, 1)
    assert len(cells) > 1
    assert cells == sorted(set(cells))
    assert all(h3int.get_resolution(c) == 10 for c in cells)


def test_tessellate_cell_smaller_than_hexagon_is_empty():
    assert tessellate_cell(0, ITALY, 1, 1) == []


def test_mass_preservation():
    value = 1234.5
    cells = tessellate_cell(10, ITALY, 0, 0)
    share = split_value(value, cells)
    assert share * len(cells) == pytest.approx(value, rel=1e-5)


def test_pole_is_rejected():
    header = GpwAsciiHeader(ncols=1, nrows=1, xllcorner=0.0, yllcorner=89.995, cellsize=0.01, nodata_value=-9999)
    with pytest.raises(GeometryError):
        tessellate_cell(5, header, 0, 0)


def test_degenerate_cell_is_rejected():
    header = GpwAsciiHeader(ncols=1, nrows=1, xllcorner=0.0, yllcorner=0.0, cellsize=0.0, nodata_value=-9999)
    with pytest.raises(GeometryError):
        tessellate_cell(5, header, 0, 0)


def _thread_settings(**kwargs):
    options = {"resolution": 9, "executor": "thread", "workers": 2}
    options.update(kwargs)
    return TessellateSettings(**options)


def test_gen_to_disk_writes_every_sample(italy_text):
    grid = read_grid(io.StringIO(italy_text))
    dst = io.BytesIO()

    summary = gen_to_disk(grid, dst, _thread_settings())

    data = dst.getvalue()
    assert len(data) == summary.records * RECORD_SIZE
    assert summary.samples == 5

    records = decode_records(data, validate=True)
    assert all(h3int.get_resolution(cell) == 9 for cell, _ in records)
    total = sum(value for _, value in records)
    assert total == pytest.approx(float(np.nansum(grid.data)), rel=1e-5)


def test_gen_to_disk_record_set_is_stable(italy_text):
    grid = read_grid(io.StringIO(italy_text))
    a, b = io.BytesIO(), io.BytesIO()
    gen_to_disk(grid, a, _thread_settings(block_cols=1, queue_depth=1))
    gen_to_disk(grid, b, _thread_settings(workers=4))
    assert sorted(decode_records(a.getvalue())) == sorted(decode_records(b.getvalue()))


def test_gen_to_disk_process_pool(italy_text):
    grid = read_grid(io.StringIO(italy_text))
    dst = io.BytesIO()
    summary = gen_to_disk(grid, dst, TessellateSettings(resolution=8, executor="process", workers=2))
    assert summary.samples == 5
    assert len(decode_records(dst.getvalue())) == summary.records


def test_gen_to_disk_reports_progress(italy_text):
    grid = read_grid(io.StringIO(italy_text))
    seen = []
    gen_to_disk(grid, io.BytesIO(), _thread_settings(block_cols=1), report_progress=lambda c, t: seen.append((c, t)))
    assert seen[-1] == (5, 5)
    assert [c for c, _ in seen] == sorted(c for c, _ in seen)


def test_gen_to_disk_aborts_on_geometry_error():
    text = """ncols 2
nrows 1
xllcorner 0.0
yllcorner 89.995
cellsize 0.01
NODATA_value -9999
1.0 2.0
"""
    grid = read_grid(io.StringIO(text))
    with pytest.raises(GeometryError):
        gen_to_disk(grid, io.BytesIO(), _thread_settings())


def test_gen_to_disk_all_nodata(gpw_4x4_text):
    grid = read_grid(io.StringIO(gpw_4x4_text.replace("0.123", "-9999")))
    dst = io.BytesIO()
    summary = gen_to_disk(grid, dst, _thread_settings())
    assert summary.samples == 0
    assert dst.getvalue() == b""


def _fine_grid(n=20, cellsize=0.01):
    rows = "\n".join(" ".join(["1.0"] * n) for _ in range(n))
    text = f"ncols {n}\nnrows {n}\nxllcorner 10.0\nyllcorner 45.0\ncellsize {cellsize}\nNODATA_value -9999\n{rows}\n"
    return read_grid(io.StringIO(text))


def test_grid_finer_than_hexagons_writes_each_cell_once():
    grid = _fine_grid()
    dst = io.BytesIO()
    summary = gen_to_disk(grid, dst, _thread_settings(resolution=7))

    records = decode_records(dst.getvalue(), validate=True)
    cells = [cell for cell, _ in records]
    assert len(cells) == len(set(cells))
    assert summary.samples == 400
    assert summary.uncovered > 0
    assert summary.records == len(records)

    def combined(order):
        index = HexIndex(SumRule(6))
        for cell, value in order:
            index.insert(cell, value)
        return index.items()

    expected = combined(records)
    assert sum(v for _, v in expected) == pytest.approx(sum(v for _, v in records))

    rng = random.Random(11)
    for _ in range(10):
        shuffled = records[:]
        rng.shuffle(shuffled)
        assert combined(shuffled) == expected
