"""SOCKS5 address encoding and a client for stream and UDP-associate connections."""