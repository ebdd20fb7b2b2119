"""Error kinds raised across prdnsd.

Each failure is raised as one of these classes at the point where it happens,
so callers pick their reaction with an ``except`` clause:

  - ConfigError: fatal, only raised during startup.
  - TransportError (and its per-protocol subclasses): upstream exchange
    failed at the network level; answered with SERVFAIL.
  - NoUpstreamError: no route (and no wildcard) covers the query name;
    answered with SERVFAIL.
  - UpstreamProtocolError: the upstream answered with something that is not
    a DNS message; the query is dropped.
  - ProtocolViolation: the client query is unusable (e.g. has no question);
    the query is dropped.
  - PersistenceError: the durable store rejected a write; logged only.
"""

from __future__ import annotations


class PRDNSError(Exception):
    """Base class for all prdnsd errors."""


class ConfigError(PRDNSError):
    """Invalid or unusable startup configuration."""


class TransportError(PRDNSError):
    """Upstream exchange failed (unreachable, timeout, short read)."""


class UDPError(TransportError):
    """DNS-over-UDP transport error."""


class TCPError(TransportError):
    """DNS-over-TCP transport error."""


class DoTError(TransportError):
    """DNS-over-TLS transport error."""


class NoUpstreamError(PRDNSError):
    """No upstream route matches the query name and no wildcard exists."""


class UpstreamProtocolError(PRDNSError):
    """Upstream reply could not be decoded as a DNS message."""


class ProtocolViolation(PRDNSError):
    """Client query is malformed (e.g. carries no question)."""


class PersistenceError(PRDNSError):
    """Durable store write or read failed."""
