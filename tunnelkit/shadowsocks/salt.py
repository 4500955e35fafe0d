"""Salt generators for Shadowsocks connections."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod


class SaltGenerator(ABC):
    """Produces salts for Shadowsocks connections."""

    @abstractmethod
    def get_salt(self, size: int) -> bytes:
        """Return a new salt of exactly size bytes."""


class RandomSaltGenerator(SaltGenerator):
    """Produces fully random salts."""

    def get_salt(self, size: int) -> bytes:
        return os.urandom(size)


class PrefixSaltGenerator(SaltGenerator):
    """Produces salts that start with a fixed prefix followed by random bytes.

    A prefix takes entropy away from the salt, making salt reuse, and with it
    key recovery, more likely. Use with care.
    """

    def __init__(self, prefix: bytes | None = None) -> None:
        self.prefix = bytes(prefix or b"")

    def get_salt(self, size: int) -> bytes:
        if len(self.prefix) > size:
            raise ValueError("prefix is too long")
        return self.prefix + os.urandom(size - len(self.prefix))


RANDOM_SALT_GENERATOR: SaltGenerator = RandomSaltGenerator()