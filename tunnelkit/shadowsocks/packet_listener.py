"""Shadowsocks UDP: packet connections that encrypt each datagram."""

from __future__ import annotations

from typing import Any

from ..socks5.address import encode_socks_address, split_socks_address
from .cipher import EncryptionKey
from .packet import pack, unpack

# Maximum supported UDP packet size in bytes.
CLIENT_UDP_BUFFER_SIZE = 16 * 1024


class PacketConn:
    """Sends and receives Shadowsocks-encrypted datagrams through a connected datagram socket.

    The wrapped connection needs send(data), recv(size) and close(). Closing
    this object closes it too.
    """

    def __init__(self, conn: Any, key: EncryptionKey) -> None:
        self.conn = conn
        self.key = key

    def write_to(self, data: bytes, address: str) -> int:
        """Encrypt data and send it through the proxy to address ("host:port")."""
        try:
            target = encode_socks_address(address)
        except ValueError as err:
            raise ValueError("failed to parse target address") from err
        plaintext = target + bytes(data)
        if self.key.salt_size + len(plaintext) + self.key.tag_size > CLIENT_UDP_BUFFER_SIZE:
            raise ValueError("packet does not fit in the UDP buffer")
        self.conn.send(pack(plaintext, self.key))
        return len(data)

    def read_from(self, size: int = CLIENT_UDP_BUFFER_SIZE) -> tuple[bytes, str]:
        """Receive one datagram and return its payload and source address.

        Raises BufferError if the payload is longer than size.
        """
        packet = self.conn.recv(CLIENT_UDP_BUFFER_SIZE)
        plaintext = unpack(packet, self.key)
        try:
            source, payload = split_socks_address(plaintext)
        except (ValueError, EOFError) as err:
            raise ValueError("failed to read source address") from err
        if len(payload) > size:
            raise BufferError("short buffer")
        return payload, str(source)

    def close(self) -> None:
        """Close the underlying connection."""
        self.conn.close()

    def __enter__(self) -> PacketConn:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class PacketListener:
    """Opens Shadowsocks packet connections through a packet endpoint.

    The endpoint needs a connect_packet() method returning a connected
    datagram socket.
    """

    def __init__(self, endpoint: Any, key: EncryptionKey | None) -> None:
        if endpoint is None:
            raise ValueError("argument endpoint must not be None")
        if key is None:
            raise ValueError("argument key must not be None")
        self.endpoint = endpoint
        self.key = key

    def listen_packet(self) -> PacketConn:
        """Connect to the proxy endpoint and return a new packet connection."""
        try:
            proxy_conn = self.endpoint.connect_packet()
        except Exception as err:
            raise OSError(f"could not connect to endpoint: {err}") from err
        return PacketConn(proxy_conn, self.key)