"""Dialing stream connections through a Shadowsocks proxy."""

from __future__ import annotations

import threading

from ..socks5.address import encode_socks_address
from ..stream import DuplexConn, StreamEndpoint, wrap_conn
from ..stream import StreamDialer as _BaseStreamDialer
from .aead_stream import Reader, Writer
from .cipher import EncryptionKey
from .salt import SaltGenerator

# Time to wait for client data before sending the connection request alone.
DEFAULT_CLIENT_DATA_WAIT = 0.01


def _flush_quietly(writer: Writer) -> None:
    try:
        writer.flush()
    except OSError:
        # The connection may already be closed; there is nobody to report to.
        pass


class StreamDialer(_BaseStreamDialer):
    """Routes stream connections through a Shadowsocks proxy at a stream endpoint.

    The connection is returned once the proxy connection is open, before the
    proxy has reached the target, so target failures cannot be reported here.
    The target address is held back for up to client_data_wait seconds so it
    can go out in one packet with the first client data.
    """

    def __init__(
        self,
        endpoint: StreamEndpoint | None,
        key: EncryptionKey | None,
        salt_generator: SaltGenerator | None = None,
        client_data_wait: float = DEFAULT_CLIENT_DATA_WAIT,
    ) -> None:
        if endpoint is None:
            raise ValueError("argument endpoint must not be None")
        if key is None:
            raise ValueError("argument key must not be None")
        self.endpoint = endpoint
        self.key = key
        self.salt_generator = salt_generator
        self.client_data_wait = client_data_wait

    def dial_stream(self, address: str) -> DuplexConn:
        """Connect to the proxy and ask it to connect to address ("host:port")."""
        try:
            target = encode_socks_address(address)
        except ValueError as err:
            raise ValueError("failed to parse target address") from err
        proxy_conn = self.endpoint.connect_stream()
        writer = Writer(proxy_conn, self.key, self.salt_generator)
        try:
            writer.lazy_write(target)
        except Exception as err:
            proxy_conn.close()
            raise OSError("failed to write target address") from err
        timer = threading.Timer(self.client_data_wait, _flush_quietly, args=(writer,))
        timer.daemon = True
        timer.start()
        reader = Reader(proxy_conn, self.key)
        return wrap_conn(proxy_conn, reader, writer)