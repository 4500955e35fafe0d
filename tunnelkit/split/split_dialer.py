"""A stream dialer that splits the outgoing stream of each connection."""

from __future__ import annotations

from ..stream import DuplexConn, StreamDialer, wrap_conn
from .writer import SplitIterator, SplitWriter


class SplitStreamDialer(StreamDialer):
    """Dials through an inner dialer and splits outgoing data according to next_split.

    The iterator is shared by every connection this dialer opens.
    """

    def __init__(self, dialer: StreamDialer | None, next_split: SplitIterator | None) -> None:
        if dialer is None:
            raise ValueError("argument dialer must not be None")
        if next_split is None:
            raise ValueError("argument next_split must not be None")
        self.dialer = dialer
        self.next_split = next_split

    def dial_stream(self, address: str) -> DuplexConn:
        """Dial address and return a connection whose writes are split."""
        inner = self.dialer.dial_stream(address)
        return wrap_conn(inner, inner, SplitWriter(inner, self.next_split))