from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, Field

MIN_RESOLUTION = 0
MAX_RESOLUTION = 15

DEFAULT_TESSELLATE_RESOLUTION = 10  # intermediate, finer than any combine target
DEFAULT_COMBINE_RESOLUTION = 8


def _default_workers() -> int:
    return os.cpu_count() or 1


class TessellateSettings(BaseModel):
    """
    Settings for the raster -> h3tess stage.

    workers: size of the executor pool
    executor: "process" for CPU parallelism, "thread" for small grids and tests
    block_cols: columns per work unit (one row, contiguous column range)
    queue_depth: max work units in flight before submission waits on the writer
    """

    resolution: int = Field(DEFAULT_TESSELLATE_RESOLUTION, ge=MIN_RESOLUTION, le=MAX_RESOLUTION)
    workers: int = Field(default_factory=_default_workers, ge=1)
    executor: Literal["process", "thread"] = "process"
    block_cols: int = Field(512, ge=1)
    queue_depth: int = Field(64, ge=1)


class CombineSettings(BaseModel):
    """
    Settings for the h3tess -> combined index stage.
    """

    resolution: int = Field(DEFAULT_COMBINE_RESOLUTION, ge=MIN_RESOLUTION, le=MAX_RESOLUTION)
    reducer: Literal["sum", "mean", "max"] = "sum"
