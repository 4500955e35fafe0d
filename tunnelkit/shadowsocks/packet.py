"""Encryption and decryption of Shadowsocks UDP packets."""

from __future__ import annotations

from .cipher import NONCE_SIZE, EncryptionKey
from .salt import RANDOM_SALT_GENERATOR

_ZERO_NONCE = bytes(NONCE_SIZE)


class ShortPacketError(ValueError):
    """Raised when a packet is too short to hold a salt."""

    def __init__(self) -> None:
        super().__init__("short packet")


def pack(plaintext: bytes, key: EncryptionKey) -> bytes:
    """Encrypt plaintext as a packet laid out as [salt][ciphertext][tag]."""
    salt = RANDOM_SALT_GENERATOR.get_salt(key.salt_size)
    aead = key.new_aead(salt)
    return salt + aead.encrypt(_ZERO_NONCE, bytes(plaintext), None)


def unpack(packet: bytes, key: EncryptionKey) -> bytes:
    """Decrypt a [salt][ciphertext][tag] packet and return its payload.

    Raises cryptography.exceptions.InvalidTag if the packet fails authentication.
    """
    salt_size = key.salt_size
    if len(packet) < salt_size:
        raise ShortPacketError()
    salt = bytes(packet[:salt_size])
    ciphertext_and_tag = bytes(packet[salt_size:])
    if len(ciphertext_and_tag) < key.tag_size:
        raise EOFError("unexpected EOF")
    aead = key.new_aead(salt)
    return aead.decrypt(_ZERO_NONCE, ciphertext_and_tag, None)