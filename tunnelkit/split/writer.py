"""A writer that splits an outgoing stream into separate writes at chosen points."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Union

SplitIterator = Callable[[], int]

_CHUNK = 32 * 1024


def fixed_split_iterator(n: int) -> SplitIterator:
    """Return an iterator that yields n once, then zero forever."""
    remaining = [n]

    def next_split() -> int:
        value = remaining[0]
        remaining[0] = 0
        return value

    return next_split


@dataclass(frozen=True)
class RepeatedSplit:
    """A run of count segments, each of the given number of bytes."""

    count: int
    bytes: int


def repeated_split_iterator(*args: Union[RepeatedSplit, tuple]) -> SplitIterator:
    """Return an iterator over runs of (count, bytes) segments, then zero forever.

    Runs with a non-positive count or size are skipped.
    """
    runs: list[list[int]] = []
    for arg in args:
        split = arg if isinstance(arg, RepeatedSplit) else RepeatedSplit(*arg)
        if split.count > 0 and split.bytes > 0:
            runs.append([split.count, split.bytes])

    def next_split() -> int:
        if not runs:
            return 0
        value = runs[0][1]
        runs[0][0] -= 1
        if runs[0][0] == 0:
            runs.pop(0)
        return value

    return next_split


class _LimitedReader:
    def __init__(self, source: Any, limit: int) -> None:
        self._source = source
        self._remaining = limit

    def read(self, size: int = -1) -> bytes:
        if self._remaining <= 0:
            return b""
        if size < 0 or size > self._remaining:
            size = self._remaining
        data = self._source.read(size)
        if data:
            self._remaining -= len(data)
        return data or b""


class SplitWriter:
    """Writes to an inner writer, cutting the data into separate writes at split points.

    next_segment_length gives the number of bytes until the next split point,
    or zero when there are no more splits.
    """

    def __init__(self, writer: Any, next_segment_length: SplitIterator) -> None:
        self.writer = writer
        self._next_segment_length = next_segment_length
        self._next_split_bytes = next_segment_length()

    def _advance(self, n: int) -> None:
        if self._next_split_bytes == 0:
            return
        self._next_split_bytes -= n
        if self._next_split_bytes > 0:
            return
        self._next_split_bytes = self._next_segment_length()

    def _write_inner(self, data: bytes) -> int:
        n = self.writer.write(data)
        return len(data) if n is None else n

    def write(self, data: bytes) -> int:
        """Write data, splitting it where split points fall; return bytes written."""
        data = bytes(data)
        written = 0
        while 0 < self._next_split_bytes < len(data):
            n = self._write_inner(data[:self._next_split_bytes])
            written += n
            self._advance(n)
            data = data[n:]
        n = self._write_inner(data)
        written += n
        self._advance(n)
        return written

    def _copy(self, source: Any) -> int:
        if hasattr(self.writer, "read_from"):
            return self.writer.read_from(source)
        copied = 0
        while True:
            chunk = source.read(_CHUNK)
            if not chunk:
                return copied
            copied += self._write_inner(chunk)

    def read_from(self, source: Any) -> int:
        """Copy source into the inner writer until end of stream, honouring split points."""
        written = 0
        while self._next_split_bytes > 0:
            expected = self._next_split_bytes
            n = self._copy(_LimitedReader(source, expected))
            written += n
            self._advance(n)
            if n < expected:
                # The source ended before the split point.
                return written
        n = self._copy(source)
        written += n
        self._advance(n)
        return written