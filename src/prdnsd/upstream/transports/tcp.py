import socket
from typing import Optional

from ...errors import TCPError


def frame(message: bytes) -> bytes:
    """Prefix a DNS message with its two-byte big-endian length (RFC 7766)."""
    return len(message).to_bytes(2, byteorder="big") + message


def recv_exact(sock: socket.socket, n: int) -> bytes:
    """
    Receive exactly n bytes from a blocking socket.

    Inputs:
      - sock: Socket (plain or TLS-wrapped)
      - n: Number of bytes
    Outputs:
      - bytes: Exactly n bytes unless EOF occurs.

    Example:
      >>> recv_exact(sock, 2)
    """
    remaining = n
    chunks = []
    while remaining > 0:
        chunk = sock.recv(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_framed(sock: socket.socket, error_cls=TCPError) -> bytes:
    """
    Read one length-prefixed DNS message.

    Inputs:
      - sock: connected socket
      - error_cls: exception class raised on a short read
    Outputs:
      - bytes: the message body
    """
    hdr = recv_exact(sock, 2)
    if len(hdr) != 2:
        raise error_cls("short read on length header")
    resp_len = int.from_bytes(hdr, byteorder="big")
    resp = recv_exact(sock, resp_len)
    if len(resp) != resp_len:
        raise error_cls("short read on body")
    return resp


def tcp_query(
    host: str,
    port: int,
    query: bytes,
    *,
    timeout: Optional[float] = None,
) -> bytes:
    """
    Perform a single DNS-over-TCP query to host:port using length-prefixed framing.

    Inputs:
      - host: Upstream resolver host/IP.
      - port: Upstream TCP port (53 typically).
      - query: Wire-format DNS query bytes.
      - timeout: Connect and per-read timeout in seconds; None waits forever.
    Outputs:
      - bytes: Wire-format DNS response.

    Example:
      >>> resp = tcp_query('8.8.8.8', 53, b'\x12\x34...', timeout=2.0)
    """
    try:
        with socket.create_connection((host, int(port)), timeout=timeout) as sock:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            sock.settimeout(timeout)
            sock.sendall(frame(query))
            return read_framed(sock, TCPError)
    except OSError as e:
        raise TCPError(f"Network error: {e}") from e
