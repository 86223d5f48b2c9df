from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import Counter
from typing import BinaryIO, Callable, Iterable, Optional, Sequence

import h3.api.basic_int as h3int
import numpy as np

from gpw_settings import MAX_RESOLUTION
from h3tess_io import RecordWriter, read_records

logger = logging.getLogger(__name__)

ProgressFn = Callable[[int, int], None]

# Children per parent cell. Pentagons have six, leaving one slot empty.
SIBLINGS = 7


class CompactionRule(ABC):
    """
    Decides whether a parent cell replaces its seven children.

    Called with the candidate parent and one slot per child (None when that
    child holds no value). Returns the parent's value, or None to keep the
    children as they are. Parents coarser than `target_resolution` are never
    merged.
    """

    def __init__(self, target_resolution: int):
        self.target_resolution = target_resolution

    def __call__(self, cell: int, children: Sequence[Optional[float]]) -> Optional[float]:
        if h3int.get_resolution(cell) < self.target_resolution:
            return None
        if len(children) != SIBLINGS or any(v is None for v in children):
            return None
        return self.reduce(children)

    @abstractmethod
    def reduce(self, values: Sequence[float]) -> float:
        ...


def _as_float32(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=np.float32)


# Reducers work in float32, the on-disk value type; overflow becomes inf.
class SumRule(CompactionRule):
    def reduce(self, values):
        with np.errstate(over="ignore"):
            return float(_as_float32(values).sum(dtype=np.float32))


class MeanRule(CompactionRule):
    def reduce(self, values):
        with np.errstate(over="ignore"):
            return float(_as_float32(values).mean(dtype=np.float32))


class MaxRule(CompactionRule):
    def reduce(self, values):
        return float(_as_float32(values).max())


RULES = {"sum": SumRule, "mean": MeanRule, "max": MaxRule}


def make_rule(name: str, target_resolution: int) -> CompactionRule:
    try:
        return RULES[name](target_resolution)
    except KeyError:
        raise ValueError(f"Unknown reducer {name!r}, expected one of {sorted(RULES)}") from None


class HexIndex:
    """
    Sparse map of H3 cell -> value where no stored cell is an ancestor or
    descendant of another.

    Every insertion is followed by bottom-up compaction through `rule`: while
    the inserted cell's parent has a complete group of children, the children
    are replaced by the parent.
    """

    def __init__(self, rule: CompactionRule):
        self.rule = rule
        self._cells: dict[int, float] = {}
        self._res_counts: Counter = Counter()

    def __len__(self) -> int:
        return len(self._cells)

    def __contains__(self, cell: int) -> bool:
        return cell in self._cells

    def __getitem__(self, cell: int) -> float:
        return self._cells[cell]

    def get(self, cell: int, default=None):
        return self._cells.get(cell, default)

    def items(self) -> list[tuple[int, float]]:
        return sorted(self._cells.items())

    def resolutions(self) -> list[int]:
        return sorted(r for r, n in self._res_counts.items() if n)

    def _put(self, cell: int, value: float) -> None:
        if cell not in self._cells:
            self._res_counts[h3int.get_resolution(cell)] += 1
        self._cells[cell] = value

    def _remove(self, cell: int) -> None:
        if self._cells.pop(cell, None) is not None:
            self._res_counts[h3int.get_resolution(cell)] -= 1

    def _drop_ancestor(self, cell: int, res: int) -> None:
        for r in self.resolutions():
            if r >= res:
                break
            ancestor = h3int.cell_to_parent(cell, r)
            if ancestor in self._cells:
                self._remove(ancestor)
                return  # disjointness: at most one stored ancestor

    def _drop_descendants(self, cell: int, res: int) -> None:
        finer = [r for r in self.resolutions() if r > res]
        if not finer:
            return
        if finer[-1] - res <= 3:
            candidates = [c for r in finer for c in h3int.cell_to_children(cell, r)]
        else:
            candidates = [
                c for c in self._cells
                if h3int.get_resolution(c) > res and h3int.cell_to_parent(c, res) == cell
            ]
        for child in candidates:
            self._remove(child)

    def _child_slots(self, parent: int) -> list[Optional[float]]:
        children = h3int.cell_to_children(parent)
        slots = [self._cells.get(child) for child in children]
        return slots + [None] * (SIBLINGS - len(slots))

    def insert(self, cell: int, value: float) -> None:
        """
        Stores `value` at `cell`, then compacts upward.

        An identical stored cell is overwritten, not summed. Stored cells that
        overlap `cell` at other resolutions are removed.
        """
        res = h3int.get_resolution(cell)
        if cell not in self._cells:
            self._drop_ancestor(cell, res)
            self._drop_descendants(cell, res)
        self._put(cell, value)
        self._compact(cell, res)

    def _compact(self, cell: int, res: int) -> None:
        while res > 0:
            parent = h3int.cell_to_parent(cell, res - 1)
            merged = self.rule(parent, self._child_slots(parent))
            if merged is None:
                return
            for child in h3int.cell_to_children(parent):
                self._remove(child)
            self._put(parent, merged)
            logger.debug(f"Compacted children of {parent:x} (res {res - 1}) -> {merged}")
            cell, res = parent, res - 1

    def lookup(self, lat: float, lng: float) -> Optional[tuple[int, float]]:
        """
        Stored cell (and its value) containing the point, at any resolution.
        """
        for r in self.resolutions():
            cell = h3int.latlng_to_cell(lat, lng, r)
            if cell in self._cells:
                return cell, self._cells[cell]
        return None


def combine_streams(
    streams: Iterable[BinaryIO],
    rule: CompactionRule,
    report_progress: Optional[ProgressFn] = None,
    total: int = 0,
) -> HexIndex:
    """
    Inserts every record of every stream, in order, into one HexIndex.

    `total` is only passed through to `report_progress` (0 when unknown).
    """
    index = HexIndex(rule)
    n = 0
    for source_no, stream in enumerate(streams, start=1):
        before = n
        for cell, value in read_records(stream, validate=True):
            index.insert(cell, value)
            n += 1
            if report_progress is not None:
                report_progress(n, total)
        logger.info(f"Source {source_no}: {n - before:,} records, index holds {len(index):,} cells")
    return index


def write_index(index: HexIndex, stream: BinaryIO) -> int:
    """
    Serializes the index as h3tess records, ascending by cell id.
    """
    writer = RecordWriter(stream)
    writer.write_many(index.items())
    writer.flush()
    return writer.count


def load_index(stream: BinaryIO, rule: Optional[CompactionRule] = None) -> HexIndex:
    """
    Rebuilds a HexIndex from a combined file. The default rule targets a
    resolution finer than H3 has, so nothing merges beyond what the file
    already holds.
    """
    return combine_streams([stream], rule or SumRule(MAX_RESOLUTION + 1))
