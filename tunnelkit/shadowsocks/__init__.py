"""Shadowsocks AEAD ciphers, stream and packet encryption, and proxy clients."""