"""Shadowsocks AEAD cipher specs and encryption keys.

Shadowsocks combines an encrypted transport, which uses authenticated
encryption so traffic looks random, with a SOCKS5-like proxy protocol. Only
the AEAD ciphers are supported; the legacy stream ciphers are not.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Callable, Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

AEAD = Union[AESGCM, ChaCha20Poly1305]

CHACHA20IETFPOLY1305 = "AEAD_CHACHA20_POLY1305"
AES256GCM = "AEAD_AES_256_GCM"
AES192GCM = "AEAD_AES_192_GCM"
AES128GCM = "AEAD_AES_128_GCM"

SUPPORTED_CIPHERS = (CHACHA20IETFPOLY1305, AES256GCM, AES192GCM, AES128GCM)

# Every supported cipher uses a 12-byte nonce.
NONCE_SIZE = 12

# Largest tag size among the supported ciphers.
MAX_TAG_SIZE = 16

_SUBKEY_INFO = b"ss-subkey"


@dataclass(frozen=True)
class CipherSpec:
    """Parameters of one Shadowsocks AEAD cipher."""

    name: str
    new_instance: Callable[[bytes], AEAD]
    key_size: int
    salt_size: int
    tag_size: int


class UnsupportedCipherError(ValueError):
    """Raised when a cipher name is not one of the supported AEAD ciphers."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"unsupported cipher {name}")


_CHACHA20_IETF_POLY1305 = CipherSpec(CHACHA20IETFPOLY1305, ChaCha20Poly1305, 32, 32, 16)
_AES_256_GCM = CipherSpec(AES256GCM, AESGCM, 32, 32, 16)
_AES_192_GCM = CipherSpec(AES192GCM, AESGCM, 24, 24, 16)
_AES_128_GCM = CipherSpec(AES128GCM, AESGCM, 16, 16, 16)

_CIPHERS_BY_NAME = {
    "AEAD_CHACHA20_POLY1305": _CHACHA20_IETF_POLY1305,
    "CHACHA20-IETF-POLY1305": _CHACHA20_IETF_POLY1305,
    "AEAD_AES_256_GCM": _AES_256_GCM,
    "AES-256-GCM": _AES_256_GCM,
    "AEAD_AES_192_GCM": _AES_192_GCM,
    "AES-192-GCM": _AES_192_GCM,
    "AEAD_AES_128_GCM": _AES_128_GCM,
    "AES-128-GCM": _AES_128_GCM,
}


def cipher_by_name(name: str) -> CipherSpec:
    """Look up a cipher by its IETF name or Shadowsocks alias, ignoring case."""
    try:
        return _CIPHERS_BY_NAME[name.upper()]
    except KeyError:
        raise UnsupportedCipherError(name) from None


def evp_bytes_to_key(data: bytes, key_len: int) -> bytes:
    """Derive key_len bytes from data with the MD5-based EVP_BytesToKey scheme."""
    derived = b""
    previous = b""
    while len(derived) < key_len:
        previous = hashlib.md5(previous + data).digest()
        derived += previous
    return derived[:key_len]


class EncryptionKey:
    """A Shadowsocks cipher together with the master key derived from a secret."""

    def __init__(self, cipher_name: str, secret: str | bytes) -> None:
        self.cipher = cipher_by_name(cipher_name)
        secret_bytes = secret.encode("utf-8") if isinstance(secret, str) else bytes(secret)
        self._master_key = evp_bytes_to_key(secret_bytes, self.cipher.key_size)

    @property
    def salt_size(self) -> int:
        """Size of the salt for this cipher."""
        return self.cipher.salt_size

    @property
    def tag_size(self) -> int:
        """Size of the AEAD tag for this cipher."""
        return self.cipher.tag_size

    def new_aead(self, salt: bytes) -> AEAD:
        """Create the AEAD for a session, using a subkey derived with HKDF-SHA1 from salt."""
        hkdf = HKDF(
            algorithm=hashes.SHA1(),
            length=self.cipher.key_size,
            salt=bytes(salt),
            info=_SUBKEY_INFO,
        )
        return self.cipher.new_instance(hkdf.derive(self._master_key))