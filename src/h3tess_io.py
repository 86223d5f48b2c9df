from __future__ import annotations

import io
import struct
from typing import BinaryIO, Iterable, Iterator

import h3.api.basic_int as h3int

from gpw_errors import InvalidCellIdError, TruncatedRecordError

# h3tess record: uint64 cell id, float32 value, little-endian, no header.
CELL = struct.Struct("<Q")
VALUE = struct.Struct("<f")
RECORD = struct.Struct("<Qf")
RECORD_SIZE = RECORD.size  # 12

H3TESS_SUFFIX = ".h3tess"


class RecordWriter:
    """
    Appends (cell, value) records to a binary stream.
    """

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self.count = 0

    def write(self, cell: int, value: float) -> None:
        self._stream.write(RECORD.pack(cell, value))
        self.count += 1

    def write_many(self, records: Iterable[tuple[int, float]]) -> None:
        for cell, value in records:
            self.write(cell, value)

    def flush(self) -> None:
        self._stream.flush()


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    buf = stream.read(size)
    # Raw (unbuffered) streams may return short reads before EOF.
    while buf and len(buf) < size:
        more = stream.read(size - len(buf))
        if not more:
            break
        buf += more
    return buf


def read_records(stream: BinaryIO, validate: bool = False) -> Iterator[tuple[int, float]]:
    """
    Yields (cell, value) until a clean end of stream.

    End of stream is only accepted on a record boundary; anything else raises
    TruncatedRecordError. With `validate`, ids that are not H3 cells raise
    InvalidCellIdError.
    """
    offset = 0
    while True:
        cell_bytes = _read_exact(stream, CELL.size)
        if not cell_bytes:
            return
        if len(cell_bytes) < CELL.size:
            raise TruncatedRecordError(f"Stream ends inside cell id of record at byte {offset}")
        value_bytes = _read_exact(stream, VALUE.size)
        if len(value_bytes) < VALUE.size:
            raise TruncatedRecordError(f"Stream ends inside value of record at byte {offset}")

        (cell,) = CELL.unpack(cell_bytes)
        (value,) = VALUE.unpack(value_bytes)
        if validate and not h3int.is_valid_cell(cell):
            raise InvalidCellIdError(f"Record at byte {offset} holds invalid cell id {cell:#x}")
        yield cell, value
        offset += RECORD_SIZE


def encode_records(records: Iterable[tuple[int, float]]) -> bytes:
    buf = io.BytesIO()
    RecordWriter(buf).write_many(records)
    return buf.getvalue()


def decode_records(data: bytes, validate: bool = False) -> list[tuple[int, float]]:
    return list(read_records(io.BytesIO(data), validate=validate))
