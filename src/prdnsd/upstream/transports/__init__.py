"""Upstream DNS client transports (UDP, TCP and DNS-over-TLS)."""

from .dot import dot_query
from .tcp import tcp_query
from .udp import udp_query

__all__ = ["dot_query", "tcp_query", "udp_query"]
