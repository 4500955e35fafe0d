"""Composable client transports: TCP, Shadowsocks, SOCKS5, TLS and stream splitting."""

__version__ = "0.1.0"