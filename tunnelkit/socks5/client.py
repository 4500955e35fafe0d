"""SOCKS5 client: stream connections and UDP association through a SOCKS5 proxy."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Any

from ..stream import StreamConn, StreamDialer, StreamEndpoint
from .address import (
    Command,
    ReplyError,
    SocksAddress,
    encode_socks_address,
    read_socks_address,
    split_host_port,
    split_socks_address,
)

# Maximum supported UDP packet size in bytes.
CLIENT_UDP_BUFFER_SIZE = 16 * 1024

_SOCKS_VERSION = 5
_AUTH_VERSION = 1
_AUTH_METHOD_NO_AUTH = 0x00
_AUTH_METHOD_USER_PASS = 0x02
_MIN_UDP_PACKET_SIZE = 10


@dataclass(frozen=True)
class _Credentials:
    username: bytes
    password: bytes


def _read_exact(conn: Any, size: int, what: str) -> bytes:
    data = bytearray()
    while len(data) < size:
        chunk = conn.read(size - len(data))
        if not chunk:
            raise EOFError(f"failed to read {what}: unexpected EOF")
        data += chunk
    return bytes(data)


def _as_bytes(value: bytes | str) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def _remote_host(conn: Any) -> str:
    """Return the host of the peer that conn is connected to."""
    address = getattr(conn, "remote_address", None)
    if address is not None:
        host, _ = split_host_port(str(address))
        return host
    sock = getattr(conn, "sock", None)
    if sock is None:
        raise OSError("cannot determine the address of the SOCKS5 proxy")
    return str(sock.getpeername()[0]).split("%", 1)[0]


class Socks5PacketConn:
    """Sends and receives datagrams through a SOCKS5 UDP association.

    pc is the connected datagram socket to the proxy's relay, and sc the TCP
    connection that keeps the association alive. Closing this closes both.
    """

    def __init__(self, pc: Any, sc: Any) -> None:
        self.pc = pc
        self.sc = sc

    def read_from(self, size: int = CLIENT_UDP_BUFFER_SIZE) -> tuple[bytes, str]:
        """Receive one datagram and return its payload and source address.

        Raises BufferError if the payload is longer than size.
        """
        packet = self.pc.recv(CLIENT_UDP_BUFFER_SIZE)
        if len(packet) < _MIN_UDP_PACKET_SIZE:
            raise ValueError("invalid SOCKS5 UDP packet: too short")
        if packet[0] != 0 or packet[1] != 0:
            raise ValueError(
                f"invalid reserved bytes: expected 0x0000, got {packet[0]:#x}{packet[1]:#x}"
            )
        if packet[2] != 0:
            raise ValueError("fragmentation is not supported")
        try:
            source, payload = split_socks_address(bytes(packet[3:]))
        except (ValueError, EOFError) as err:
            raise ValueError(f"failed to read address: {err}") from err
        if len(payload) > size:
            raise BufferError("short buffer")
        return payload, str(source)

    def write_to(self, data: bytes, address: str) -> int:
        """Send data to address ("host:port") through the relay.

        Returns the number of bytes handed to the socket, header included.
        """
        try:
            target = encode_socks_address(address)
        except ValueError as err:
            raise ValueError(f"failed to append SOCKS5 address: {err}") from err
        # RSV (2 bytes), FRAG, then the address and the payload.
        return self.pc.send(b"\x00\x00\x00" + target + bytes(data))

    def settimeout(self, timeout: float | None) -> None:
        """Set the timeout of the datagram socket."""
        self.pc.settimeout(timeout)

    def close(self) -> None:
        """Close both the association connection and the datagram socket."""
        first_error: BaseException | None = None
        for closeable in (self.sc, self.pc):
            try:
                closeable.close()
            except Exception as err:  # noqa: BLE001 - close the other one too
                if first_error is None:
                    first_error = err
        if first_error is not None:
            raise first_error

    def __enter__(self) -> Socks5PacketConn:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class Client(StreamDialer):
    """Routes connections through a SOCKS5 proxy reached at a stream endpoint.

    The method selection, credentials and command request are sent in a
    single write to save a round trip. A non-zero reply from the server
    raises ReplyError.
    """

    def __init__(self, stream_endpoint: StreamEndpoint | None) -> None:
        if stream_endpoint is None:
            raise ValueError("argument endpoint must not be None")
        self._endpoint = stream_endpoint
        self._packet_dialer: Any = None
        self._credentials: _Credentials | None = None

    def set_credentials(self, username: bytes | str, password: bytes | str) -> None:
        """Use username/password authentication; each must be 1 to 255 bytes."""
        user_bytes = _as_bytes(username)
        pass_bytes = _as_bytes(password)
        if len(user_bytes) > 255:
            raise ValueError("username exceeds 255 bytes")
        if not user_bytes:
            raise ValueError("username must be at least 1 byte")
        if len(pass_bytes) > 255:
            raise ValueError("password exceeds 255 bytes")
        if not pass_bytes:
            raise ValueError("password must be at least 1 byte")
        self._credentials = _Credentials(user_bytes, pass_bytes)

    def enable_packet(self, packet_dialer: Any) -> None:
        """Allow listen_packet, using packet_dialer.dial_packet(address) to reach the relay."""
        self._packet_dialer = packet_dialer

    def _request(self, conn: StreamConn, cmd: int, dst_addr: str) -> SocksAddress:
        cred = self._credentials
        if cred is None:
            out = bytearray([_SOCKS_VERSION, 1, _AUTH_METHOD_NO_AUTH])
        else:
            out = bytearray([_SOCKS_VERSION, 1, _AUTH_METHOD_USER_PASS])
            out += bytes([_AUTH_VERSION, len(cred.username)]) + cred.username
            out += bytes([len(cred.password)]) + cred.password
        out += bytes([_SOCKS_VERSION, int(cmd), 0])
        try:
            out += encode_socks_address(dst_addr)
        except ValueError as err:
            raise ValueError(f"failed to create SOCKS5 address: {err}") from err

        try:
            conn.write(bytes(out))
        except OSError as err:
            raise OSError(f"failed to write combined SOCKS5 request: {err}") from err

        version, method = _read_exact(conn, 2, "method server response")
        if version != _SOCKS_VERSION:
            raise ValueError(f"invalid protocol version {version}. Expected 5")
        if method == _AUTH_METHOD_USER_PASS:
            auth_version, status = _read_exact(conn, 2, "authentication version and status")
            if auth_version != _AUTH_VERSION:
                raise ValueError(f"invalid authentication version {auth_version}. Expected 1")
            if status != 0:
                raise PermissionError(f"authentication failed: {status}")
        elif method != _AUTH_METHOD_NO_AUTH:
            raise ValueError(f"unsupported SOCKS authentication method {method}. Expected 2")

        version, reply, _ = _read_exact(conn, 3, "connect server response")
        if version != _SOCKS_VERSION:
            raise ValueError(f"invalid protocol version {version}. Expected 5")
        if reply != 0:
            raise ReplyError(reply)

        try:
            return read_socks_address(conn)
        except EOFError as err:
            raise EOFError(f"failed to read bound address: {err}") from err
        except ValueError as err:
            raise ValueError(f"failed to read bound address: {err}") from err

    def _connect_and_request(self, cmd: int, dst_addr: str) -> tuple[StreamConn, SocksAddress]:
        try:
            conn = self._endpoint.connect_stream()
        except Exception as err:
            raise OSError(f"could not connect to SOCKS5 proxy: {err}") from err
        try:
            bind_addr = self._request(conn, cmd, dst_addr)
        except BaseException:
            conn.close()
            raise
        return conn, bind_addr

    def dial_stream(self, address: str) -> StreamConn:
        """Open a stream to address ("host:port") through the proxy."""
        conn, _ = self._connect_and_request(Command.CONNECT, address)
        return conn

    def listen_packet(self) -> Socks5PacketConn:
        """Set up a UDP association and return a packet connection through it."""
        if self._packet_dialer is None:
            raise RuntimeError("packet support is not enabled; call enable_packet first")
        # The client address is not known in advance, so ask the server to
        # accept packets from any address.
        sc, bind_addr = self._connect_and_request(Command.UDP_ASSOCIATE, "0.0.0.0:0")
        try:
            if bind_addr.ip is not None and bind_addr.ip.is_unspecified:
                host = _remote_host(sc)
                bind_addr = SocksAddress(ip=ipaddress.ip_address(host), port=bind_addr.port)
            pc = self._packet_dialer.dial_packet(str(bind_addr))
        except Exception as err:
            sc.close()
            raise OSError(f"could not connect to packet endpoint: {err}") from err
        return Socks5PacketConn(pc, sc)