import pytest
from cryptography.exceptions import InvalidTag

from tunnelkit.shadowsocks.cipher import (
    CHACHA20IETFPOLY1305,
    SUPPORTED_CIPHERS,
    EncryptionKey,
)
from tunnelkit.shadowsocks.packet import ShortPacketError, pack, unpack


@pytest.fixture
def key():
    return EncryptionKey(CHACHA20IETFPOLY1305, "secret")


@pytest.mark.parametrize("name", SUPPORTED_CIPHERS)
def test_round_trip(name):
    key = EncryptionKey(name, "secret")
    plaintext = bytes(i % 256 for i in range(1500 - key.salt_size - key.tag_size))
    packet = pack(plaintext, key)
    assert len(packet) == key.salt_size + len(plaintext) + key.tag_size
    assert unpack(packet, key) == plaintext


def test_empty_payload(key):
    packet = pack(b"", key)
    assert len(packet) == key.salt_size + key.tag_size
    assert unpack(packet, key) == b""


def test_salts_are_random(key):
    first = pack(b"payload", key)
    second = pack(b"payload", key)
    assert first[: key.salt_size] != second[: key.salt_size]
    assert unpack(first, key) == unpack(second, key) == b"payload"


def test_short_packet(key):
    with pytest.raises(ShortPacketError) as info:
        unpack(b"x" * (key.salt_size - 1), key)
    assert str(info.value) == "short packet"


def test_missing_tag(key):
    with pytest.raises(EOFError):
        unpack(b"x" * (key.salt_size + key.tag_size - 1), key)


def test_tampered_packet(key):
    packet = bytearray(pack(b"payload", key))
    packet[-1] ^= 0x01
    with pytest.raises(InvalidTag):
        unpack(bytes(packet), key)


def test_wrong_key(key):
    packet = pack(b"payload", key)
    other = EncryptionKey(CHACHA20IETFPOLY1305, "password")
    with pytest.raises(InvalidTag):
        unpack(packet, other)