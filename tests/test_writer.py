import io

from tunnelkit.split.writer import (
    RepeatedSplit,
    SplitWriter,
    fixed_split_iterator,
    repeated_split_iterator,
)


class CollectWrites:
    def __init__(self):
        self.writes = []

    def write(self, data):
        self.writes.append(bytes(data))
        return len(data)


class CollectReader:
    def __init__(self, data):
        self._source = io.BytesIO(data)
        self.reads = []

    def read(self, size=-1):
        data = self._source.read(size)
        if data:
            self.reads.append(data)
        return data


def test_write_split():
    inner = CollectWrites()
    writer = SplitWriter(inner, fixed_split_iterator(3))
    assert writer.write(b"Request") == 7
    assert inner.writes == [b"Req", b"uest"]


def test_write_split_zero():
    inner = CollectWrites()
    writer = SplitWriter(inner, repeated_split_iterator(
        RepeatedSplit(1, 0), RepeatedSplit(0, 1), RepeatedSplit(10, 0), RepeatedSplit(0, 2)))
    assert writer.write(b"Request") == 7
    assert inner.writes == [b"Request"]


def test_write_split_zero_long():
    inner = CollectWrites()
    writer = SplitWriter(inner, repeated_split_iterator(
        RepeatedSplit(1, 0), RepeatedSplit(1_000_000_000_000_000_000, 0)))
    assert writer.write(b"Request") == 7
    assert inner.writes == [b"Request"]


def test_write_split_zero_prefix():
    inner = CollectWrites()
    writer = SplitWriter(inner, repeated_split_iterator(RepeatedSplit(1, 0), RepeatedSplit(3, 2)))
    assert writer.write(b"Request") == 7
    assert inner.writes == [b"Re", b"qu", b"es", b"t"]


def test_write_split_multi():
    inner = CollectWrites()
    writer = SplitWriter(inner, repeated_split_iterator(
        RepeatedSplit(1, 1), RepeatedSplit(3, 2), RepeatedSplit(2, 3)))
    assert writer.write(b"RequestRequestRequest") == 21
    assert inner.writes == [b"R", b"eq", b"ue", b"st", b"Req", b"ues", b"tRequest"]


def test_write_short_write():
    inner = CollectWrites()
    writer = SplitWriter(inner, fixed_split_iterator(10))
    assert writer.write(b"Request") == 7
    assert inner.writes == [b"Request"]


def test_write_zero():
    inner = CollectWrites()
    writer = SplitWriter(inner, fixed_split_iterator(0))
    assert writer.write(b"Request") == 7
    assert inner.writes == [b"Request"]


def test_write_needs_two_writes():
    inner = CollectWrites()
    writer = SplitWriter(inner, fixed_split_iterator(5))
    assert writer.write(b"Re") == 2
    assert writer.write(b"quest") == 5
    assert inner.writes == [b"Re", b"que", b"st"]


def test_write_compound():
    inner = CollectWrites()
    writer = SplitWriter(SplitWriter(inner, fixed_split_iterator(4)), fixed_split_iterator(1))
    assert writer.write(b"Request") == 7
    assert inner.writes == [b"R", b"equ", b"est"]


def test_write_repeat_number3_skip_bytes5():
    inner = CollectWrites()
    writer = SplitWriter(inner, repeated_split_iterator(RepeatedSplit(1, 1), RepeatedSplit(3, 5)))
    assert writer.write(b"RequestRequestRequest.") == 7 * 3 + 1
    assert inner.writes == [b"R", b"eques", b"tRequ", b"estRe", b"quest."]


def test_write_repeat_number3_skip_bytes0():
    inner = CollectWrites()
    writer = SplitWriter(inner, repeated_split_iterator(RepeatedSplit(1, 1), RepeatedSplit(0, 3)))
    assert writer.write(b"Request") == 7
    assert inner.writes == [b"R", b"equest"]


def test_read_from():
    sink = io.BytesIO()
    writer = SplitWriter(sink, fixed_split_iterator(3))

    reader = CollectReader(b"Request1")
    assert writer.read_from(reader) == 8
    assert reader.reads == [b"Req", b"uest1"]

    reader = CollectReader(b"Request2")
    assert writer.read_from(reader) == 8
    assert reader.reads == [b"Request2"]
    assert sink.getvalue() == b"Request1Request2"


def test_read_from_multi():
    writer = SplitWriter(io.BytesIO(), repeated_split_iterator(
        RepeatedSplit(1, 1), RepeatedSplit(3, 2), RepeatedSplit(2, 3)))
    reader = CollectReader(b"RequestRequestRequest")
    assert writer.read_from(reader) == 21
    assert reader.reads == [b"R", b"eq", b"ue", b"st", b"Req", b"ues", b"tRequest"]


def test_read_from_short_read():
    writer = SplitWriter(io.BytesIO(), fixed_split_iterator(10))
    reader = CollectReader(b"Request1")
    assert writer.read_from(reader) == 8
    assert reader.reads == [b"Request1"]

    reader = CollectReader(b"Request2")
    assert writer.read_from(reader) == 8
    assert reader.reads == [b"Re", b"quest2"]


def test_read_from_through_inner_read_from():
    inner = CollectWrites()
    writer = SplitWriter(SplitWriter(inner, fixed_split_iterator(0)), fixed_split_iterator(3))
    assert writer.read_from(io.BytesIO(b"Request")) == 7
    assert inner.writes == [b"Req", b"uest"]


def test_fixed_split_iterator_sequence():
    next_split = fixed_split_iterator(3)
    assert [next_split() for _ in range(3)] == [3, 0, 0]


def test_repeated_split_iterator_accepts_tuples():
    next_split = repeated_split_iterator((1, 1), (2, 3), (0, 9))
    assert [next_split() for _ in range(5)] == [1, 3, 3, 0, 0]


def test_repeated_split_iterator_does_not_change_input():
    splits = [RepeatedSplit(2, 4)]
    next_split = repeated_split_iterator(*splits)
    assert [next_split() for _ in range(3)] == [4, 4, 0]
    assert splits == [RepeatedSplit(2, 4)]