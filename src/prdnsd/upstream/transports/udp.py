import socket
from typing import Optional

from ...errors import UDPError


def _family_for(host: str) -> int:
    return socket.AF_INET6 if ":" in host else socket.AF_INET


def udp_query(
    host: str,
    port: int,
    query: bytes,
    *,
    timeout: Optional[float] = None,
) -> bytes:
    """
    Brief: Perform a single UDP DNS query.

    Inputs:
    - host: upstream resolver IP (IPv4 or IPv6 literal) or hostname
    - port: upstream UDP port
    - query: wire-format DNS query bytes
    - timeout: socket timeout in seconds; None waits forever

    Outputs:
    - bytes: wire-format DNS response

    Example:
        >>> try:
        ...     udp_query('127.0.0.1', 53, b'\x00\x01', timeout=0.5)
        ... except UDPError:
        ...     pass
    """
    try:
        with socket.socket(_family_for(host), socket.SOCK_DGRAM) as s:
            s.settimeout(timeout)
            s.connect((host, int(port)))
            s.send(query)
            return s.recv(65535)
    except OSError as e:
        raise UDPError(f"UDP error: {e}") from e
