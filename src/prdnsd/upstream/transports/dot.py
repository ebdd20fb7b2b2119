import socket
import ssl
from typing import Optional

from ...errors import DoTError
from .tcp import frame, read_framed


def build_client_context(
    verify: bool = True,
    ca_file: Optional[str] = None,
    min_version: ssl.TLSVersion = ssl.TLSVersion.TLSv1_2,
) -> ssl.SSLContext:
    """
    Build an SSLContext for DoT client connections.

    Inputs:
      - verify: Whether to verify certificates.
      - ca_file: Optional path to a CA bundle used instead of the system roots.
      - min_version: Minimum TLS version; default TLS 1.2.
    Outputs:
      - ssl.SSLContext configured for client use.

    Example:
      >>> ctx = build_client_context(True, None)
    """
    ctx = ssl.create_default_context(cafile=ca_file)
    if not verify:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    ctx.minimum_version = min_version
    return ctx


def dot_query(
    host: str,
    port: int,
    query: bytes,
    *,
    server_name: Optional[str] = None,
    verify: bool = True,
    ca_file: Optional[str] = None,
    timeout: Optional[float] = None,
    ssl_context: Optional[ssl.SSLContext] = None,
) -> bytes:
    """
    Perform a single DNS-over-TLS query (RFC 7858) to host:port.

    Inputs:
      - host: Upstream resolver hostname or IP.
      - port: Upstream DoT port (usually 853).
      - query: Wire-format DNS query bytes.
      - server_name: SNI/verification name; defaults to host.
      - verify: Enable TLS certificate verification.
      - ca_file: Optional CA bundle path.
      - timeout: Connect and per-read timeout in seconds; None waits forever.
      - ssl_context: Prebuilt client context; verify and ca_file are ignored
        when given.
    Outputs:
      - bytes: Wire-format DNS response.

    Example:
      >>> resp = dot_query('1.1.1.1', 853, b'\x12\x34...DNS...', timeout=2.0)
    """
    ctx = ssl_context or build_client_context(verify=verify, ca_file=ca_file)
    sni = server_name or host
    try:
        with socket.create_connection((host, int(port)), timeout=timeout) as sock:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            with ctx.wrap_socket(sock, server_hostname=sni) as tls_sock:
                tls_sock.settimeout(timeout)
                tls_sock.sendall(frame(query))
                return read_framed(tls_sock, DoTError)
    except ssl.SSLError as e:
        raise DoTError(f"TLS error: {e}") from e
    except OSError as e:
        raise DoTError(f"Network error: {e}") from e
