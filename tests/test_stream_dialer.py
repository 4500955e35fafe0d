import io
import socket
import threading
import time

import pytest

from tunnelkit.shadowsocks.aead_stream import Reader, Writer
from tunnelkit.shadowsocks.cipher import CHACHA20IETFPOLY1305, EncryptionKey
from tunnelkit.shadowsocks.salt import PrefixSaltGenerator, SaltGenerator
from tunnelkit.shadowsocks.stream_dialer import StreamDialer
from tunnelkit.socks5.address import read_socks_address
from tunnelkit.stream import FuncStreamEndpoint, SocketStreamConn, StreamConn, TCPEndpoint

TEST_TARGET_ADDR = "test.local:1111"


def make_test_key():
    return EncryptionKey(CHACHA20IETFPOLY1305, "testPassword")


def make_test_payload(size):
    return bytes(i % 256 for i in range(size))


def _listen():
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    listener.settimeout(5)
    host, port = listener.getsockname()
    return listener, f"{host}:{port}"


def _start_echo_proxy(key):
    listener, address = _listen()
    results = {"targets": [], "errors": []}

    def serve():
        try:
            conn, _ = listener.accept()
        except OSError as err:
            results["errors"].append(err)
            return
        finally:
            listener.close()
        conn.settimeout(5)
        with conn:
            client = SocketStreamConn(conn)
            ssr = Reader(client, key)
            ssw = Writer(client, key)
            try:
                target = read_socks_address(ssr)
                results["targets"].append(str(target))
                ssr.write_to(ssw)
            except Exception as err:  # recorded for the test to check
                results["errors"].append(err)

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    return address, thread, results


def _read_exact(conn, size):
    data = b""
    while len(data) < size:
        chunk = conn.read(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


class _MemoryConn(StreamConn):
    def __init__(self):
        self.written = bytearray()
        self.lock = threading.Lock()
        self.closed = False
        self.write_closed = False

    def read(self, size=1024):
        return b""

    def write(self, data):
        with self.lock:
            self.written += bytes(data)
        return len(data)

    def close_read(self):
        pass

    def close_write(self):
        self.write_closed = True

    def close(self):
        self.closed = True

    def snapshot(self):
        with self.lock:
            return bytes(self.written)


def _wait_for_data(conn, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        data = conn.snapshot()
        if data:
            return data
        time.sleep(0.005)
    return conn.snapshot()


def test_dial_echoes_payload():
    key = make_test_key()
    address, thread, results = _start_echo_proxy(key)
    dialer = StreamDialer(TCPEndpoint(address), key)
    conn = dialer.dial_stream(TEST_TARGET_ADDR)
    conn.conn.settimeout(5)
    payload = make_test_payload(1024)
    assert conn.write(payload) == 1024
    assert _read_exact(conn, 1024) == payload
    conn.close()
    thread.join(5)
    assert results["errors"] == []
    assert results["targets"] == [TEST_TARGET_ADDR]


def test_dial_no_payload_sends_target():
    key = make_test_key()
    address, thread, results = _start_echo_proxy(key)
    dialer = StreamDialer(TCPEndpoint(address), key)
    dialer.client_data_wait = 0
    conn = dialer.dial_stream(TEST_TARGET_ADDR)
    time.sleep(0.1)
    conn.close()
    thread.join(5)
    assert results["errors"] == []
    assert results["targets"] == [TEST_TARGET_ADDR]


def test_dial_fast_close_sends_nothing():
    listener, address = _listen()
    try:
        dialer = StreamDialer(TCPEndpoint(address), make_test_key(), client_data_wait=0.1)
        conn = dialer.dial_stream(TEST_TARGET_ADDR)
        time.sleep(0.001)
        conn.close()

        accepted, _ = listener.accept()
        server_side = SocketStreamConn(accepted)
        server_side.settimeout(5)
        try:
            assert server_side.read(64) == b""
        finally:
            server_side.close()
    finally:
        listener.close()


def test_tcp_prefix():
    prefix = b"test prefix"
    listener, address = _listen()
    try:
        dialer = StreamDialer(TCPEndpoint(address), make_test_key())
        dialer.salt_generator = PrefixSaltGenerator(prefix)
        conn = dialer.dial_stream(TEST_TARGET_ADDR)
        conn.write(b"")
        conn.close()

        accepted, _ = listener.accept()
        server_side = SocketStreamConn(accepted)
        server_side.settimeout(5)
        try:
            assert _read_exact(server_side, len(prefix)) == prefix
        finally:
            server_side.close()
    finally:
        listener.close()


def test_target_address_is_flushed_after_wait():
    key = make_test_key()
    memory = _MemoryConn()
    dialer = StreamDialer(FuncStreamEndpoint(lambda: memory), key, client_data_wait=0)
    dialer.dial_stream(TEST_TARGET_ADDR)
    data = _wait_for_data(memory)
    reader = Reader(io.BytesIO(data), key)
    assert str(read_socks_address(reader)) == TEST_TARGET_ADDR
    assert reader.read() == b""


def test_first_write_carries_target_and_payload():
    key = make_test_key()
    memory = _MemoryConn()
    dialer = StreamDialer(FuncStreamEndpoint(lambda: memory), key, client_data_wait=10)
    conn = dialer.dial_stream(TEST_TARGET_ADDR)
    assert memory.snapshot() == b""
    conn.write(b"hello")
    reader = Reader(io.BytesIO(memory.snapshot()), key)
    assert str(read_socks_address(reader)) == TEST_TARGET_ADDR
    assert reader.read() == b"hello"


def test_close_write_goes_to_proxy_conn():
    memory = _MemoryConn()
    dialer = StreamDialer(FuncStreamEndpoint(lambda: memory), make_test_key(), client_data_wait=10)
    conn = dialer.dial_stream(TEST_TARGET_ADDR)
    conn.close_write()
    assert memory.write_closed is True


def test_nil_arguments_rejected():
    with pytest.raises(ValueError, match="endpoint"):
        StreamDialer(None, make_test_key())
    with pytest.raises(ValueError, match="key"):
        StreamDialer(FuncStreamEndpoint(lambda: _MemoryConn()), None)


def test_bad_target_address():
    dialer = StreamDialer(FuncStreamEndpoint(lambda: _MemoryConn()), make_test_key())
    with pytest.raises(ValueError, match="failed to parse target address"):
        dialer.dial_stream("noport")


def test_endpoint_error_propagates():
    def fail():
        raise ConnectionRefusedError("refused")

    dialer = StreamDialer(FuncStreamEndpoint(fail), make_test_key())
    with pytest.raises(ConnectionRefusedError):
        dialer.dial_stream(TEST_TARGET_ADDR)


def test_salt_failure_closes_proxy_conn():
    class BrokenSalt(SaltGenerator):
        def get_salt(self, size):
            raise RuntimeError("no entropy")

    memory = _MemoryConn()
    dialer = StreamDialer(FuncStreamEndpoint(lambda: memory), make_test_key(),
                          salt_generator=BrokenSalt())
    with pytest.raises(OSError, match="failed to write target address"):
        dialer.dial_stream(TEST_TARGET_ADDR)
    assert memory.closed is True