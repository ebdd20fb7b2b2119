import logging
import socket
import socketserver
from typing import Callable, Optional

logger = logging.getLogger(__name__)

Resolver = Callable[[bytes, str], Optional[bytes]]


class _UDPHandler(socketserver.BaseRequestHandler):
    """
    Brief: UDP handler that delegates each datagram to the server's resolver.

    Inputs:
    - request: (data, socket) tuple provided by socketserver
    - client_address: peer address

    Outputs:
    - None; sends a reply only when the resolver returns one.
    """

    def handle(self) -> None:
        data, sock = self.request  # type: ignore
        peer_ip = (
            self.client_address[0]
            if isinstance(self.client_address, tuple)
            else "0.0.0.0"
        )
        try:
            resp = self.server.resolver(data, peer_ip)  # type: ignore[attr-defined]
        except Exception:
            logger.exception("Unhandled error while resolving query from %s", peer_ip)
            return
        if not resp:
            return
        try:
            sock.sendto(resp, self.client_address)
        except OSError as e:
            logger.warning("Error sending msg to %s: %s", self.client_address, e)


class DNSUDPServer(socketserver.ThreadingUDPServer):
    """ThreadingUDPServer carrying its resolver; one thread per datagram."""

    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, server_address, resolver: Resolver):
        self.resolver = resolver
        host = server_address[0]
        if ":" in host:
            self.address_family = socket.AF_INET6
        super().__init__(server_address, _UDPHandler)


def make_udp_server(host: str, port: int, resolver: Resolver) -> DNSUDPServer:
    """
    Brief: Bind a DNS-over-UDP server without starting it.

    Inputs:
    - host: listen address ('' for all IPv4 interfaces, '::' for IPv6)
    - port: listen port (0 picks a free port)
    - resolver: callable mapping (query_bytes, client_ip) -> response_bytes or None

    Outputs:
    - DNSUDPServer, already bound; raises OSError when binding fails.
    """
    return DNSUDPServer((host, int(port)), resolver)
