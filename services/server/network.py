"""Local network helpers."""

import socket

LOOPBACK = "127.0.0.1"


def get_local_ip(probe_host: str = "8.8.8.8", probe_port: int = 80) -> str:
    """Return the LAN address other devices can reach, or loopback.

    Connecting a UDP socket sends nothing; it only makes the OS pick the
    outbound interface.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect((probe_host, probe_port))
            address = sock.getsockname()[0]
    except OSError:
        return LOOPBACK
    return address or LOOPBACK


def bind_listening_socket(host: str, port: int) -> socket.socket:
    """Bind and listen on host:port; raises OSError when the port is taken."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        # Allows an immediate restart on the same port; a live listener still conflicts.
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(128)
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock
