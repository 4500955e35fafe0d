"""TLS transport: TLS client connections over any stream connection."""

from __future__ import annotations

import functools
import ipaddress
import ssl
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, MutableMapping, Optional

from ..socks5.address import split_host_port
from ..stream import StreamConn, StreamDialer

_READ_SIZE = 32 * 1024


@dataclass
class ClientConfig:
    """Parameters of a TLS client connection.

    server_name is sent in the SNI (empty means no SNI), certificate_name is
    the name the server certificate is checked against (empty skips the name
    check), next_protos is the ALPN list and session_cache maps server names
    to sessions for resumption. root_certificates, if set, is PEM data with
    the only trusted roots; otherwise the system roots are used.
    """

    server_name: str = ""
    certificate_name: str = ""
    next_protos: list[str] = field(default_factory=list)
    session_cache: Optional[MutableMapping[str, ssl.SSLSession]] = None
    root_certificates: Optional[str] = None


ClientOption = Callable[[str, ClientConfig], None]


def _normalize_host(host: str) -> str:
    return host.lower()


def with_sni(host_name: str) -> ClientOption:
    """Send host_name in the SNI; certificate verification is not affected."""

    def option(_host: str, config: ClientConfig) -> None:
        config.server_name = host_name

    return option


def if_host(match_host: str, option: ClientOption) -> ClientOption:
    """Apply option only when the dialed host matches match_host (empty matches all)."""
    match_host = _normalize_host(match_host)

    def conditional(host: str, config: ClientConfig) -> None:
        if match_host and match_host != host:
            return
        option(host, config)

    return conditional


def with_alpn(protocols: list[str]) -> ClientOption:
    """Set the protocol list for Application-Layer Protocol Negotiation."""

    def option(_host: str, config: ClientConfig) -> None:
        config.next_protos = list(protocols)

    return option


def with_session_cache(session_cache: MutableMapping[str, ssl.SSLSession]) -> ClientOption:
    """Use session_cache to resume TLS sessions."""

    def option(_host: str, config: ClientConfig) -> None:
        config.session_cache = session_cache

    return option


def with_certificate_name(hostname: str) -> ClientOption:
    """Verify the server certificate against hostname instead of the dialed host."""

    def option(_host: str, config: ClientConfig) -> None:
        config.certificate_name = hostname

    return option


@functools.lru_cache(maxsize=None)
def _client_context(next_protos: tuple[str, ...], root_certificates: str | None) -> ssl.SSLContext:
    if root_certificates:
        context = ssl.create_default_context(cadata=root_certificates)
    else:
        context = ssl.create_default_context()
    # The chain is verified by OpenSSL; the name is checked separately so that
    # the SNI and the certificate name can differ.
    context.check_hostname = False
    context.verify_mode = ssl.CERT_REQUIRED
    if next_protos:
        context.set_alpn_protocols(list(next_protos))
    return context


def _dns_matches(pattern: str, host: str) -> bool:
    if pattern == host:
        return True
    if pattern.startswith("*."):
        head, dot, rest = host.partition(".")
        return bool(head) and bool(dot) and "." + rest == pattern[1:]
    return False


def _certificate_matches(cert: dict, name: str) -> bool:
    sans = cert.get("subjectAltName", ())
    try:
        ip = ipaddress.ip_address(name)
    except ValueError:
        ip = None
    if ip is not None:
        for kind, value in sans:
            if kind != "IP Address":
                continue
            try:
                if ipaddress.ip_address(value.strip()) == ip:
                    return True
            except ValueError:
                continue
        return False
    host = name.lower().rstrip(".")
    return any(
        kind == "DNS" and _dns_matches(value.lower().rstrip("."), host)
        for kind, value in sans
    )


class TLSStreamConn(StreamConn):
    """A TLS client connection running over an inner StreamConn."""

    def __init__(self, inner: StreamConn, config: ClientConfig) -> None:
        self.inner = inner
        self.server_name = config.server_name
        self._config = config
        self._lock = threading.Lock()
        self._send_lock = threading.RLock()
        self._write_closed = False
        self._incoming = ssl.MemoryBIO()
        self._outgoing = ssl.MemoryBIO()
        self._cache_key = config.server_name or config.certificate_name
        context = _client_context(tuple(config.next_protos), config.root_certificates)
        session = None
        if config.session_cache is not None and self._cache_key:
            session = config.session_cache.get(self._cache_key)
        try:
            self._ssl = self._wrap(context, session)
        except ValueError:
            # The cached session belongs to another context.
            self._ssl = self._wrap(context, None)

    def _wrap(self, context: ssl.SSLContext, session: ssl.SSLSession | None) -> ssl.SSLObject:
        return context.wrap_bio(
            self._incoming,
            self._outgoing,
            server_side=False,
            server_hostname=self.server_name or None,
            session=session,
        )

    def _send_pending(self) -> None:
        with self._send_lock:
            with self._lock:
                data = self._outgoing.read()
            if data:
                self.inner.write(data)

    def _receive(self) -> None:
        data = self.inner.read(_READ_SIZE)
        with self._lock:
            if data:
                self._incoming.write(data)
            else:
                self._incoming.write_eof()

    def _save_session(self) -> None:
        cache = self._config.session_cache
        if cache is None or not self._cache_key:
            return
        with self._lock:
            session = self._ssl.session
        if session is not None:
            cache[self._cache_key] = session

    def _handshake(self) -> None:
        while True:
            try:
                with self._lock:
                    self._ssl.do_handshake()
                break
            except ssl.SSLWantReadError:
                self._send_pending()
                self._receive()
        self._send_pending()
        name = self._config.certificate_name
        if name and not _certificate_matches(self._ssl.getpeercert() or {}, name):
            raise ssl.SSLCertVerificationError(f"certificate is not valid for {name}")
        self._save_session()

    @property
    def selected_alpn_protocol(self) -> str | None:
        """The protocol chosen by ALPN, if any."""
        return self._ssl.selected_alpn_protocol()

    @property
    def session_reused(self) -> bool:
        """Whether the session was resumed from the cache."""
        return self._ssl.session_reused

    def read(self, size: int = _READ_SIZE) -> bytes:
        while True:
            try:
                with self._lock:
                    return self._ssl.read(size)
            except ssl.SSLZeroReturnError:
                return b""
            except ssl.SSLWantReadError:
                self._send_pending()
                self._receive()

    def write(self, data: bytes) -> int:
        data = bytes(data)
        remaining = memoryview(data)
        with self._send_lock:
            while remaining:
                try:
                    with self._lock:
                        n = self._ssl.write(remaining)
                        out = self._outgoing.read()
                except ssl.SSLWantReadError:
                    self._send_pending()
                    self._receive()
                    continue
                remaining = remaining[n:]
                if out:
                    self.inner.write(out)
        return len(data)

    def _shutdown_tls(self) -> None:
        with self._send_lock:
            if self._write_closed:
                return
            self._write_closed = True
            with self._lock:
                try:
                    self._ssl.unwrap()
                except ssl.SSLWantReadError:
                    pass
                out = self._outgoing.read()
            if out:
                self.inner.write(out)

    def close_read(self) -> None:
        self.inner.close_read()

    def close_write(self) -> None:
        """Send the TLS close_notify alert, then close the inner write end."""
        first_error: BaseException | None = None
        try:
            self._shutdown_tls()
        except Exception as err:  # noqa: BLE001 - still close the inner end
            first_error = err
        try:
            self.inner.close_write()
        except Exception as err:  # noqa: BLE001
            if first_error is None:
                first_error = err
        self._save_session()
        if first_error is not None:
            raise first_error

    def close(self) -> None:
        try:
            self._shutdown_tls()
        except (OSError, ValueError):
            pass
        self._save_session()
        self.inner.close()


def wrap_conn(conn: StreamConn, server_name: str, *args: ClientOption) -> TLSStreamConn:
    """Run a TLS client handshake over conn and return the TLS connection.

    The options are applied in order, with the lower-cased server_name as
    the host they see. conn is left open if the handshake fails.
    """
    config = ClientConfig(server_name=server_name, certificate_name=server_name)
    normalized = _normalize_host(server_name)
    for option in args:
        option(normalized, config)
    tls_conn = TLSStreamConn(conn, config)
    tls_conn._handshake()
    return tls_conn


class TLSStreamDialer(StreamDialer):
    """Wraps the connections of a base dialer in TLS configured by options."""

    def __init__(self, base_dialer: StreamDialer | None, *options: ClientOption) -> None:
        if base_dialer is None:
            raise ValueError("base dialer must not be None")
        self.dialer = base_dialer
        self.options = options

    def dial_stream(self, address: str) -> TLSStreamConn:
        """Dial address ("host:port") and perform a TLS handshake for its host."""
        try:
            host, _ = split_host_port(address)
        except ValueError as err:
            raise ValueError(f"invalid address: {err}") from err
        inner = self.dialer.dial_stream(address)
        try:
            return wrap_conn(inner, host, *self.options)
        except BaseException:
            inner.close()
            raise