"""SOCKS5 reply codes, commands and address encoding."""

from __future__ import annotations

import enum
import io
import ipaddress
from dataclasses import dataclass
from typing import Any, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class ReplyCode(enum.IntEnum):
    """Error values of the REP field in a SOCKS5 server reply."""

    GENERAL_SERVER_FAILURE = 0x01
    CONNECTION_NOT_ALLOWED_BY_RULESET = 0x02
    NETWORK_UNREACHABLE = 0x03
    HOST_UNREACHABLE = 0x04
    CONNECTION_REFUSED = 0x05
    TTL_EXPIRED = 0x06
    COMMAND_NOT_SUPPORTED = 0x07
    ADDRESS_TYPE_NOT_SUPPORTED = 0x08


_REPLY_MESSAGES = {
    ReplyCode.GENERAL_SERVER_FAILURE: "general SOCKS server failure",
    ReplyCode.CONNECTION_NOT_ALLOWED_BY_RULESET: "connection not allowed by ruleset",
    ReplyCode.NETWORK_UNREACHABLE: "network unreachable",
    ReplyCode.HOST_UNREACHABLE: "host unreachable",
    ReplyCode.CONNECTION_REFUSED: "connection refused",
    ReplyCode.TTL_EXPIRED: "TTL expired",
    ReplyCode.COMMAND_NOT_SUPPORTED: "command not supported",
    ReplyCode.ADDRESS_TYPE_NOT_SUPPORTED: "address type not supported",
}


class ReplyError(Exception):
    """Raised when a SOCKS5 server answers with a non-zero reply code."""

    def __init__(self, code: int) -> None:
        try:
            self.code: int = ReplyCode(code)
        except ValueError:
            self.code = int(code)
        message = _REPLY_MESSAGES.get(self.code, f"reply code {int(code)}")
        super().__init__(message)


class Command(enum.IntEnum):
    """SOCKS5 request commands."""

    CONNECT = 1
    BIND = 2
    UDP_ASSOCIATE = 3


class AddressType(enum.IntEnum):
    """SOCKS5 address types."""

    IPV4 = 0x01
    DOMAIN_NAME = 0x03
    IPV6 = 0x04


@dataclass(frozen=True)
class SocksAddress:
    """A SOCKS address holding either a domain name or an IP, and a port."""

    name: str = ""
    ip: IPAddress | None = None
    port: int = 0

    def __str__(self) -> str:
        host = str(self.ip) if self.ip is not None else self.name
        return join_host_port(host, str(self.port))


def split_host_port(address: str) -> tuple[str, str]:
    """Split "host:port" or "[host]:port" into host and port strings."""
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address {address!r}")
        rest = address[end + 1:]
        if not rest:
            raise ValueError(f"missing port in address {address!r}")
        if not rest.startswith(":"):
            raise ValueError(f"unexpected text after ']' in address {address!r}")
        host = address[1:end]
        if "[" in address[1:end + 1] or "]" in rest:
            raise ValueError(f"unexpected bracket in address {address!r}")
        return host, rest[1:]
    colon = address.rfind(":")
    if colon < 0:
        raise ValueError(f"missing port in address {address!r}")
    host = address[:colon]
    if ":" in host:
        raise ValueError(f"too many colons in address {address!r}")
    if "[" in host or "]" in address[colon:]:
        raise ValueError(f"unexpected bracket in address {address!r}")
    return host, address[colon + 1:]


def join_host_port(host: str, port: str | int) -> str:
    """Join host and port, bracketing hosts that contain a colon."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _parse_port(port: str) -> int:
    if not (port.isascii() and port.isdigit()):
        raise ValueError(f"invalid port {port!r}")
    value = int(port)
    if value > 0xFFFF:
        raise ValueError(f"port {port!r} out of range")
    return value


def _parse_ip(host: str) -> IPAddress | None:
    if "%" in host:
        return None
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def encode_socks_address(address: str) -> bytes:
    """Encode "host:port" as ATYP, DST.ADDR and DST.PORT."""
    host, port_text = split_host_port(address)
    port = _parse_port(port_text)
    ip = _parse_ip(host)
    if isinstance(ip, ipaddress.IPv4Address):
        head = bytes([AddressType.IPV4]) + ip.packed
    elif isinstance(ip, ipaddress.IPv6Address):
        head = bytes([AddressType.IPV6]) + ip.packed
    else:
        name = host.encode("utf-8", "surrogateescape")
        if len(name) > 255:
            raise ValueError(f"domain name length = {len(name)} is over 255")
        head = bytes([AddressType.DOMAIN_NAME, len(name)]) + name
    return head + port.to_bytes(2, "big")


def _read_exact(stream: Any, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = stream.read(size - len(data))
        if not chunk:
            raise EOFError("unexpected end of SOCKS address")
        data += chunk
    return data


def read_socks_address(stream: Any) -> SocksAddress:
    """Read one SOCKS address from a stream with a read(size) method."""
    kind = stream.read(1)
    if not kind:
        raise EOFError("missing SOCKS address type")
    if kind[0] == AddressType.IPV4:
        address = SocksAddress(ip=ipaddress.IPv4Address(_read_exact(stream, 4)))
    elif kind[0] == AddressType.IPV6:
        address = SocksAddress(ip=ipaddress.IPv6Address(_read_exact(stream, 16)))
    elif kind[0] == AddressType.DOMAIN_NAME:
        length = _read_exact(stream, 1)[0]
        name = _read_exact(stream, length).decode("utf-8", "surrogateescape")
        address = SocksAddress(name=name)
    else:
        raise ValueError("unrecognized address type")
    port = int.from_bytes(_read_exact(stream, 2), "big")
    return SocksAddress(name=address.name, ip=address.ip, port=port)


def split_socks_address(data: bytes) -> tuple[SocksAddress, bytes]:
    """Parse the SOCKS address at the start of data and return it with the remaining bytes."""
    stream = io.BytesIO(data)
    address = read_socks_address(stream)
    return address, data[stream.tell():]