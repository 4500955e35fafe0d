"""Shadowsocks AEAD stream encryption: chunked Writer and Reader."""

from __future__ import annotations

import threading
from typing import Any

from cryptography.exceptions import InvalidTag

from .cipher import NONCE_SIZE, EncryptionKey
from .salt import RANDOM_SALT_GENERATOR, SaltGenerator

# Maximum payload size of one chunk, as fixed by the Shadowsocks AEAD spec.
PAYLOAD_SIZE_MASK = 0x3FFF

_NONCE_MODULUS = 1 << (8 * NONCE_SIZE)
_READ_SIZE = 32 * 1024


def _write_all(sink: Any, data: bytes) -> int:
    view = memoryview(data)
    total = 0
    while total < len(view):
        n = sink.write(view[total:])
        if n is None:
            n = len(view) - total
        if n <= 0:
            raise OSError("short write")
        total += n
    return total


def _nonce(counter: int) -> bytes:
    return counter.to_bytes(NONCE_SIZE, "little")


class Writer:
    """Encrypts data written to it and sends it to an inner writer.

    lazy_write queues data, such as a header, without sending it until
    flush() is called, a normal write is made, or the buffer fills up, so it
    can be sent together with the first payload. All methods except flush()
    must be called from a single thread.
    """

    def __init__(self, writer: Any, key: EncryptionKey,
                 salt_generator: SaltGenerator | None = None) -> None:
        self._writer = writer
        self._key = key
        self.salt_generator: SaltGenerator | None = salt_generator or RANDOM_SALT_GENERATOR
        self._lock = threading.Lock()
        self._need_flush = False
        self._pending = bytearray()
        self._aead: Any = None
        self._salt = b""
        self._counter = 0

    def _init(self) -> None:
        if self._aead is not None:
            return
        try:
            salt = self.salt_generator.get_salt(self._key.salt_size)
        except Exception as err:
            raise OSError(f"failed to generate salt: {err}") from err
        self._aead = self._key.new_aead(salt)
        self._salt = bytes(salt)
        self.salt_generator = None

    def _encrypt(self, plaintext: bytes) -> bytes:
        sealed = self._aead.encrypt(_nonce(self._counter), bytes(plaintext), None)
        self._counter = (self._counter + 1) % _NONCE_MODULUS
        return sealed

    def _enqueue(self, data: bytes) -> int:
        n = min(len(data), PAYLOAD_SIZE_MASK - len(self._pending))
        self._pending += data[:n]
        return n

    def _flush(self) -> None:
        if not self._pending:
            return
        # The salt goes out together with the first chunk.
        prefix = self._salt if self._counter == 0 else b""
        size_block = self._encrypt(len(self._pending).to_bytes(2, "big"))
        payload_block = self._encrypt(self._pending)
        self._pending.clear()
        _write_all(self._writer, prefix + size_block + payload_block)

    def write(self, data: bytes) -> int:
        """Encrypt and send all of data, together with any lazily queued data."""
        data = bytes(data)
        self._init()
        written = 0
        with self._lock:
            if self._need_flush:
                written = self._enqueue(data)
                self._flush()
                self._need_flush = False
        remaining = memoryview(data)[written:]
        while remaining:
            chunk = remaining[:PAYLOAD_SIZE_MASK]
            self._pending += chunk
            written += len(chunk)
            remaining = remaining[len(chunk):]
            self._flush()
        return written

    def lazy_write(self, data: bytes) -> int:
        """Queue data to be sent with the next write or flush; return its length."""
        self._init()
        data = memoryview(bytes(data))
        with self._lock:
            queued = 0
            while True:
                n = self._enqueue(data)
                queued += n
                data = data[n:]
                if not data:
                    self._need_flush = True
                    return queued
                self._flush()

    def flush(self) -> None:
        """Send the queued data, if any. Safe to call from another thread."""
        with self._lock:
            if not self._need_flush:
                return
            self._flush()

    def read_from(self, source: Any) -> int:
        """Read source until end of stream, encrypting and sending everything read."""
        self._init()
        written = 0
        eof = False
        with self._lock:
            need_flush = self._need_flush
            pending = len(self._pending)
        if need_flush:
            # A concurrent flush may run while this read blocks.
            error: BaseException | None = None
            data = b""
            try:
                data = source.read(PAYLOAD_SIZE_MASK - pending)
            except BaseException as err:  # flush queued data before reporting
                error = err
            with self._lock:
                data = bytes(data or b"")
                written = len(data)
                eof = not data
                self._enqueue(data)
                self._need_flush = False
                self._flush()
            if error is not None:
                raise error
        while not eof:
            chunk = source.read(PAYLOAD_SIZE_MASK)
            if not chunk:
                break
            self._pending[:] = chunk
            written += len(chunk)
            self._flush()
        return written


class Reader:
    """Decrypts a Shadowsocks AEAD stream read from an inner reader.

    read() returns b"" at a clean end of stream and raises EOFError if the
    stream ends in the middle of the salt or of a chunk. Authentication
    failures raise ValueError.
    """

    def __init__(self, reader: Any, key: EncryptionKey) -> None:
        self._source = reader
        self._key = key
        self._aead: Any = None
        self._counter = 0
        self._leftover = b""

    def _read_full(self, size: int) -> bytes:
        data = bytearray()
        while len(data) < size:
            chunk = self._source.read(size - len(data))
            if not chunk:
                break
            data += chunk
        return bytes(data)

    def _open(self, block: bytes) -> bytes:
        nonce = _nonce(self._counter)
        self._counter = (self._counter + 1) % _NONCE_MODULUS
        try:
            return self._aead.decrypt(nonce, block, None)
        except InvalidTag as err:
            raise ValueError("failed to decrypt") from err

    def _read_chunk(self) -> bytes | None:
        """Return the next decrypted chunk, or None at a clean end of stream."""
        tag_size = self._key.tag_size
        if self._aead is None:
            salt = self._read_full(self._key.salt_size)
            if not salt:
                return None
            if len(salt) < self._key.salt_size:
                raise EOFError("unexpected EOF reading salt")
            self._aead = self._key.new_aead(salt)
        size_block = self._read_full(2 + tag_size)
        if not size_block:
            return None
        if len(size_block) < 2 + tag_size:
            raise EOFError("unexpected EOF reading payload size")
        size = int.from_bytes(self._open(size_block), "big") & PAYLOAD_SIZE_MASK
        payload_block = self._read_full(size + tag_size)
        if len(payload_block) < size + tag_size:
            raise EOFError("unexpected EOF reading payload")
        return self._open(payload_block)

    def _ensure_leftover(self) -> bool:
        while not self._leftover:
            chunk = self._read_chunk()
            if chunk is None:
                return False
            self._leftover = chunk
        return True

    def read(self, size: int = _READ_SIZE) -> bytes:
        """Return up to size decrypted bytes, or b"" at end of stream."""
        if not self._ensure_leftover():
            return b""
        data = self._leftover[:size]
        self._leftover = self._leftover[len(data):]
        return data

    def write_to(self, sink: Any) -> int:
        """Decrypt the rest of the stream into sink and return the byte count."""
        written = 0
        while self._ensure_leftover():
            written += _write_all(sink, self._leftover)
            self._leftover = b""
        return written