"""
Shared fixtures. Puts src/ on sys.path so the flat modules import without
an installed package.
"""

import os
import sys

import pytest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
SRC_DIR = os.path.join(PROJECT_ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


GPW_HEADER = """ncols         10800
nrows         10800
xllcorner     -180
yllcorner     -4.2632564145606e-14
cellsize      0.0083333333333333
NODATA_value  -9999
"""

GPW_4X4 = """ncols         4
nrows         4
xllcorner     -180
yllcorner     -4.2632564145606e-14
cellsize      0.0083333333333333
NODATA_value  -9999
-9999 -9999 -9999 -9999
-9999 -9999 -9999 -9999
-9999 -9999 -9999 -9999
-9999 -9999 0.123 -9999
"""

# Small grid over northern Italy, away from poles and the antimeridian.
ITALY_3X3 = """ncols 3
nrows 3
xllcorner 10.0
yllcorner 45.0
cellsize 0.01
NODATA_value -9999
100.0 -9999 25.5
-9999 7.0 -9999
3.25 -9999 1000.0
"""


@pytest.fixture
def gpw_header_text():
    return GPW_HEADER


@pytest.fixture
def gpw_4x4_text():
    return GPW_4X4


@pytest.fixture
def italy_text():
    return ITALY_3X3


@pytest.fixture
def italy_grid_path(tmp_path):
    path = tmp_path / "italy.asc"
    path.write_text(ITALY_3X3)
    return path
