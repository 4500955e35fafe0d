"""Stream connections, endpoints and dialers built on TCP sockets."""

from __future__ import annotations

import ipaddress
import socket
from abc import ABC, abstractmethod
from typing import Any, Callable

from .socks5.address import join_host_port, split_host_port

_CHUNK = 32 * 1024

Control = Callable[[str, str], None]


def _write_all(writer: Any, data: bytes) -> int:
    view = memoryview(data)
    total = 0
    while total < len(view):
        n = writer.write(view[total:])
        if n is None:
            n = len(view) - total
        if n <= 0:
            raise OSError("short write")
        total += n
    return total


def _copy(reader: Any, writer: Any) -> int:
    """Copy everything from reader to writer, preferring write_to and read_from."""
    if hasattr(reader, "write_to"):
        return reader.write_to(writer)
    if hasattr(writer, "read_from"):
        return writer.read_from(reader)
    copied = 0
    while True:
        chunk = reader.read(_CHUNK)
        if not chunk:
            return copied
        copied += _write_all(writer, chunk)


class StreamConn(ABC):
    """A bidirectional byte stream whose read and write ends can be closed separately."""

    @abstractmethod
    def read(self, size: int = _CHUNK) -> bytes:
        """Read up to size bytes; an empty result means end of stream."""

    @abstractmethod
    def write(self, data: bytes) -> int:
        """Write all of data and return its length."""

    @abstractmethod
    def close_read(self) -> None:
        """Close the read end of the connection."""

    @abstractmethod
    def close_write(self) -> None:
        """Close the write end, signalling end of stream to the peer."""

    @abstractmethod
    def close(self) -> None:
        """Close the whole connection."""

    def __enter__(self) -> StreamConn:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class SocketStreamConn(StreamConn):
    """A StreamConn over a connected TCP socket."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock

    def read(self, size: int = _CHUNK) -> bytes:
        return self.sock.recv(size)

    def write(self, data: bytes) -> int:
        self.sock.sendall(data)
        return len(data)

    def close_read(self) -> None:
        self.sock.shutdown(socket.SHUT_RD)

    def close_write(self) -> None:
        self.sock.shutdown(socket.SHUT_WR)

    def close(self) -> None:
        self.sock.close()

    def settimeout(self, timeout: float | None) -> None:
        self.sock.settimeout(timeout)


class DuplexConn(StreamConn):
    """A StreamConn that reads and writes through replacement objects.

    Closing the read or write end still goes to the wrapped connection.
    """

    def __init__(self, conn: StreamConn | None, reader: Any, writer: Any) -> None:
        self.conn = conn
        self.reader = reader
        self.writer = writer

    def read(self, size: int = _CHUNK) -> bytes:
        return self.reader.read(size)

    def write(self, data: bytes) -> int:
        n = self.writer.write(data)
        return len(data) if n is None else n

    def read_from(self, source: Any) -> int:
        """Copy all of source into the writer, preferring the writer's own read_from."""
        if hasattr(self.writer, "read_from"):
            return self.writer.read_from(source)
        return _copy(source, self.writer)

    def write_to(self, sink: Any) -> int:
        """Copy everything from the reader into sink."""
        return _copy(self.reader, sink)

    def close_read(self) -> None:
        self.conn.close_read()

    def close_write(self) -> None:
        self.conn.close_write()

    def close(self) -> None:
        self.conn.close()


def wrap_conn(conn: StreamConn | None, reader: Any, writer: Any) -> DuplexConn:
    """Wrap conn with a new reader and writer, keeping its close_read and close_write."""
    if isinstance(conn, DuplexConn):
        conn = conn.conn
    return DuplexConn(conn, reader, writer)


def _resolve(host: str, port: str) -> list[tuple[int, str, int]]:
    if port.isascii() and port.isdigit():
        port_num = int(port)
    else:
        port_num = socket.getservbyname(port, "tcp")
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        infos = socket.getaddrinfo(host, port_num, 0, socket.SOCK_STREAM)
        return [(family, addr[0], addr[1]) for family, _, _, _, addr in infos]
    family = socket.AF_INET6 if ip.version == 6 else socket.AF_INET
    return [(family, str(ip), port_num)]


def _dial_tcp(address: str, timeout: float | None, control: Control | None) -> SocketStreamConn:
    host, port = split_host_port(address)
    first_error: BaseException | None = None
    for family, ip, port_num in _resolve(host, port):
        network = "tcp6" if family == socket.AF_INET6 else "tcp4"
        sock = None
        try:
            if control is not None:
                control(network, join_host_port(ip, str(port_num)))
            sock = socket.socket(family, socket.SOCK_STREAM)
            sock.settimeout(timeout)
            sock.connect((ip, port_num))
        except Exception as err:  # noqa: BLE001 - try the next address
            if sock is not None:
                sock.close()
            if first_error is None:
                first_error = err
            continue
        sock.settimeout(None)
        return SocketStreamConn(sock)
    if first_error is not None:
        raise first_error
    raise OSError(f"no addresses found for {address}")


class StreamEndpoint(ABC):
    """Something that opens stream connections to a fixed destination."""

    @abstractmethod
    def connect_stream(self) -> StreamConn:
        """Open a new connection to the endpoint."""


class TCPEndpoint(StreamEndpoint):
    """Connects over TCP to a fixed "host:port" address."""

    def __init__(self, address: str, timeout: float | None = None,
                 control: Control | None = None) -> None:
        self.address = address
        self.timeout = timeout
        self.control = control

    def connect_stream(self) -> StreamConn:
        return _dial_tcp(self.address, self.timeout, self.control)


class FuncStreamEndpoint(StreamEndpoint):
    """A StreamEndpoint backed by a function."""

    def __init__(self, func: Callable[[], StreamConn]) -> None:
        self.func = func

    def connect_stream(self) -> StreamConn:
        return self.func()


class StreamDialer(ABC):
    """Something that opens stream connections to a given "host:port"."""

    @abstractmethod
    def dial_stream(self, address: str) -> StreamConn:
        """Connect to address, where the host may be a domain name or an IP."""


class StreamDialerEndpoint(StreamEndpoint):
    """Connects to a fixed address through a StreamDialer."""

    def __init__(self, dialer: StreamDialer, address: str) -> None:
        self.dialer = dialer
        self.address = address

    def connect_stream(self) -> StreamConn:
        return self.dialer.dial_stream(self.address)


class TCPDialer(StreamDialer):
    """Dials plain TCP connections."""

    def __init__(self, timeout: float | None = None, control: Control | None = None) -> None:
        self.timeout = timeout
        self.control = control

    def dial_stream(self, address: str) -> StreamConn:
        return _dial_tcp(address, self.timeout, self.control)


class FuncStreamDialer(StreamDialer):
    """A StreamDialer backed by a function."""

    def __init__(self, func: Callable[[str], StreamConn]) -> None:
        self.func = func

    def dial_stream(self, address: str) -> StreamConn:
        return self.func(address)