"""TLS client connections layered over any stream connection or dialer."""