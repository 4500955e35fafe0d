# tunnelkit

Client-side building blocks for tunnelling TCP and UDP traffic through
proxies. Every stream transport uses the same small interfaces, so you can
stack them. For example, you can run a TLS dialer over a split dialer over a
SOCKS5 client.

## Installation

```
pip install tunnelkit
```

The only runtime dependency is `cryptography`.

## Core interfaces (`tunnelkit.stream`)

- `StreamConn` is a byte stream with `read(size)`, `write(data)`,
  `close_read()`, `close_write()` and `close()`. Its ends can be closed
  separately, so a connection can be half-closed. It also works as a
  context manager.
- `SocketStreamConn` is a `StreamConn` over a connected TCP socket. It also
  has a `settimeout(timeout)` method.
- `StreamDialer.dial_stream(address)` connects to `"host:port"` and returns
  a `StreamConn`. Two dialers are provided:
  - `TCPDialer(timeout=None, control=None)` dials directly. `control`, if
    given, is called with the network (`"tcp4"` or `"tcp6"`) and the
    resolved address before each attempt. If it raises, that attempt is
    abandoned.
  - `FuncStreamDialer` wraps a callable.
- `StreamEndpoint.connect_stream()` connects to a fixed destination. Three
  endpoints are provided: `TCPEndpoint(address, timeout=None, control=None)`,
  `FuncStreamEndpoint` and `StreamDialerEndpoint(dialer, address)`.
- `wrap_conn(conn, reader, writer)` returns a `DuplexConn`. It reads from
  `reader` and writes to `writer`, and it passes `close_read`, `close_write`
  and `close` through to `conn`. `DuplexConn.read_from(source)` and
  `DuplexConn.write_to(sink)` copy whole streams. They prefer the writer's
  own `read_from` and the reader's own `write_to` when those exist.

## Shadowsocks (`tunnelkit.shadowsocks`)

Only AEAD ciphers are supported: `AEAD_CHACHA20_POLY1305`,
`AEAD_AES_256_GCM`, `AEAD_AES_192_GCM` and `AEAD_AES_128_GCM`. Each also
accepts its Shadowsocks alias, such as `chacha20-ietf-poly1305`, and names
are matched without regard to case. An unknown name raises
`UnsupportedCipherError`.

```python
from tunnelkit.stream import TCPEndpoint
from tunnelkit.shadowsocks.cipher import EncryptionKey
from tunnelkit.shadowsocks.stream_dialer import StreamDialer

key = EncryptionKey("chacha20-ietf-poly1305", "secret")
dialer = StreamDialer(TCPEndpoint("203.0.113.10:8388"), key)
conn = dialer.dial_stream("example.com:80")
conn.write(b"GET / HTTP/1.0\r\nHost: example.com\r\n\r\n")
print(conn.read(4096))
conn.close()
```

`StreamDialer(endpoint, key, salt_generator=None, client_data_wait=0.01)`
returns the connection as soon as the proxy is reached. It does not wait
for the proxy to reach the target, so failures at the target cannot be
reported by `dial_stream`. The target address is held back for up to
`client_data_wait` seconds so that it goes out in the same packet as the
first application data.

The salt generators are in `tunnelkit.shadowsocks.salt`:

- `RandomSaltGenerator` is the default.
- `PrefixSaltGenerator(prefix)` fixes the first bytes of every connection.
  A prefix takes entropy away from the salt, so use it with care.

`Writer` and `Reader` in `tunnelkit.shadowsocks.aead_stream` implement the
encrypted TCP stream format on any object with `write` or `read` methods.

- `Writer.lazy_write(data)` queues data until the next `write`, `flush()` or
  `read_from(source)`. `flush()` may be called from another thread.
- `Reader.read()` returns `b""` at a clean end of stream. It raises
  `EOFError` if the stream stops partway through a chunk, and `ValueError`
  if authentication fails.

For UDP, `pack(plaintext, key)` and `unpack(packet, key)` in
`tunnelkit.shadowsocks.packet` seal and open single datagrams. `unpack`
raises `ShortPacketError` for a packet shorter than the salt.
`PacketListener(endpoint, key).listen_packet()` returns a `PacketConn` with
two methods:

- `write_to(data, address)` sends one datagram.
- `read_from(size)` returns `(payload, source_address)`.

## SOCKS5 (`tunnelkit.socks5`)

```python
from tunnelkit.stream import TCPEndpoint
from tunnelkit.socks5.client import Client

client = Client(TCPEndpoint("127.0.0.1:1080"))
password = b"password"
client.set_credentials(b"user", password)
conn = client.dial_stream("example.com:443")
```

The method selection, the credentials and the CONNECT request go out in a
single write.

- If the server refuses the request, `ReplyError` is raised. Its `code`
  holds the `ReplyCode`.
- If authentication fails, `PermissionError` is raised.
- `set_credentials` accepts `bytes` or `str`, each from 1 to 255 bytes long.

Call `enable_packet(packet_dialer)` to make `listen_packet()` work. It sets
up a UDP ASSOCIATE and returns a `Socks5PacketConn`, which has
`write_to(data, address)`, `read_from(size)`, `settimeout(timeout)` and
`close()`.

`tunnelkit.socks5.address` holds the wire format:

- `encode_socks_address`, `read_socks_address` and `split_socks_address`
  encode and decode addresses.
- `SocksAddress` holds a decoded address.
- `split_host_port` and `join_host_port` split and join `"host:port"`
  strings.

## Stream splitting (`tunnelkit.split`)

`SplitWriter(writer, next_segment_length)` breaks outgoing bytes into
separate writes at chosen offsets. `SplitStreamDialer(dialer, next_split)`
applies it to every connection of another dialer. The offsets come from
`fixed_split_iterator(n)` or from
`repeated_split_iterator(RepeatedSplit(count, bytes), ...)`.

```python
from tunnelkit.split.writer import RepeatedSplit, SplitWriter, repeated_split_iterator

writer = SplitWriter(sink, repeated_split_iterator(RepeatedSplit(1, 1), RepeatedSplit(3, 2)))
writer.write(b"Request")  # sink sees b"R", b"eq", b"ue", b"st"
```

## TLS (`tunnelkit.tls`)

`TLSStreamDialer(base_dialer, *options)` wraps any stream dialer in TLS, and
`wrap_conn(conn, server_name, *options)` does the same for a single
connection. The options are:

- `with_sni(name)` sets the name sent in the SNI. An empty name sends no
  SNI.
- `with_certificate_name(name)` sets the name the certificate is checked
  against. IP addresses are matched against IP subject alternative names.
- `with_alpn(protocols)` sets the ALPN protocol list.
- `with_session_cache(mapping)` turns on session resumption. The mapping
  maps server names to `ssl.SSLSession`.
- `if_host(host, option)` applies `option` only when the dialled host
  matches `host`.

The certificate chain is verified against the system roots, or against
`ClientConfig.root_certificates` when that is set. `TLSStreamConn` exposes
`selected_alpn_protocol` and `session_reused`.

## What the package does not do

- It contains only clients. There is no Shadowsocks or SOCKS5 server and no
  command-line tool.
- It has no UDP dialer or endpoint of its own:
  - `PacketListener` needs an endpoint with a `connect_packet()` method.
  - `Client.enable_packet` needs an object with a `dial_packet(address)`
    method.

  Each must return a connected datagram socket, or any object with `send`,
  `recv` and `close`.
- The TLS layer does not check certificate revocation.
- Everything is blocking. There is no asyncio interface.

## Running the tests

```
pip install -e ".[test]"
pytest
```