from __future__ import annotations

import logging
import time
from typing import Dict, Iterable, List, NamedTuple, Optional

from dnslib import DNSRecord
from pydantic import BaseModel, Field, ValidationError

from ..errors import ConfigError, NoUpstreamError
from .transports import dot_query, tcp_query, udp_query
from .transports.dot import build_client_context

logger = logging.getLogger(__name__)

DEFAULT_UPSTREAM = "tcp-tls://1.1.1.1:853"

_DEFAULT_PORTS = {"udp": 53, "tcp": 53, "tcp-tls": 853}


class UpstreamRoute(BaseModel):
    """Brief: One upstream table entry.

    Inputs:
      - domain: Suffix key, lowercased, e.g. '.example.com'; '' is the wildcard.
      - protocol: 'udp', 'tcp' or 'tcp-tls'.
      - host: Upstream host or IP literal (IPv6 without brackets).
      - port: Upstream port.
      - timeout: Exchange timeout in seconds; None waits forever.

    Outputs:
      - Immutable UpstreamRoute instance.
    """

    domain: str = ""
    protocol: str = "udp"
    host: str
    port: int = Field(ge=1, le=65535)
    timeout: Optional[float] = None

    class Config:
        frozen = True

    @property
    def address(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        prefix = f"{self.domain}=" if self.domain else ""
        return f"{prefix}{self.protocol}://{self.address}"


class ForwardResult(NamedTuple):
    """Raw upstream reply, round-trip time in seconds and the route used."""

    wire: bytes
    rtt: float
    route: UpstreamRoute


def split_host_port(hostport: str, default_port: int) -> tuple[str, int]:
    """Brief: Split 'host:port', '[v6]:port', 'host' or a bare IPv6 literal."""
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise ConfigError(f"unterminated IPv6 literal in {hostport!r}")
        host = hostport[1:end]
        rest = hostport[end + 1 :]
        if not rest:
            return host, default_port
        if not rest.startswith(":"):
            raise ConfigError(f"invalid upstream address {hostport!r}")
        port_text = rest[1:]
    elif hostport.count(":") == 1:
        host, port_text = hostport.split(":", 1)
    else:
        # No port, or an unbracketed IPv6 literal.
        return hostport, default_port
    try:
        return host, int(port_text)
    except ValueError:
        raise ConfigError(f"invalid port in upstream address {hostport!r}") from None


def parse_upstream_spec(spec: str, timeout: Optional[float] = None) -> UpstreamRoute:
    """Brief: Parse ``[domain=][protocol://]host[:port]`` into an UpstreamRoute.

    Inputs:
      - spec: upstream specification string.
      - timeout: exchange timeout in seconds (None or 0 waits forever).

    Outputs:
      - UpstreamRoute.

    Raises:
      - ConfigError for unknown protocols, empty hosts or bad ports.

    Example:
      >>> str(parse_upstream_spec(".corp=tcp://10.0.0.2:53"))
      '.corp=tcp://10.0.0.2:53'
    """
    rest = str(spec).strip()
    domain = ""
    protocol = "udp"
    if "=" in rest:
        domain, rest = rest.split("=", 1)
    if "://" in rest:
        protocol, rest = rest.split("://", 1)
    protocol = protocol.lower()
    if protocol not in _DEFAULT_PORTS:
        raise ConfigError(f"unknown upstream protocol {protocol!r} in {spec!r}")

    host, port = split_host_port(rest, _DEFAULT_PORTS[protocol])
    if not host:
        raise ConfigError(f"missing upstream host in {spec!r}")
    try:
        return UpstreamRoute(
            domain=domain.strip().lower(),
            protocol=protocol,
            host=host,
            port=port,
            timeout=timeout or None,
        )
    except ValidationError as e:
        raise ConfigError(f"invalid upstream {spec!r}: {e}") from e


class UpstreamRouter:
    """Brief: Chooses an upstream by longest matching domain suffix and forwards to it.

    Routes are keyed by domain; a later route for the same domain replaces an
    earlier one. The table is not modified after construction.
    The DoT client context is built once here and shared by every forward.

    Inputs (constructor):
      - routes: UpstreamRoute instances.
      - logger: optional logger; defaults to this module's logger.

    Example:
      >>> router = UpstreamRouter([parse_upstream_spec("udp://9.9.9.9:53")])
      >>> router.select("example.com.").host
      '9.9.9.9'
    """

    def __init__(
        self,
        routes: Iterable[UpstreamRoute],
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._log = logger or logging.getLogger(__name__)
        table: Dict[str, UpstreamRoute] = {}
        for route in routes:
            table[route.domain] = route
        self._table = table
        # Loaded up front: the CA bundle may be unreachable after chroot.
        self._tls_context = (
            build_client_context()
            if any(r.protocol == "tcp-tls" for r in table.values())
            else None
        )

    @classmethod
    def from_specs(
        cls,
        specs: Iterable[str],
        timeout: Optional[float] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> "UpstreamRouter":
        specs = list(specs) or [DEFAULT_UPSTREAM]
        return cls(
            [parse_upstream_spec(s, timeout) for s in specs],
            logger=logger,
        )

    @property
    def routes(self) -> List[UpstreamRoute]:
        return list(self._table.values())

    def select(self, qname: str) -> UpstreamRoute:
        """Brief: Pick the route for a query name.

        Inputs:
          - qname: query name, trailing dot optional.

        Outputs:
          - UpstreamRoute: the exact-name route if present, otherwise the
            longest '.suffix' route, otherwise the wildcard.

        Raises:
          - NoUpstreamError when nothing matches and no wildcard exists.
        """
        name = str(qname).lower()
        if name.endswith("."):
            name = name[:-1]

        route = self._table.get(name)
        if route is not None:
            return route

        dot = name.find(".")
        while dot >= 0:
            name = name[dot:]
            route = self._table.get(name)
            if route is not None:
                return route
            name = name[1:]
            dot = name.find(".")

        route = self._table.get("")
        if route is not None:
            return route
        raise NoUpstreamError(f"no upstream server set for {qname!r}")

    def forward(self, request: DNSRecord) -> ForwardResult:
        """Brief: Send a query verbatim to its routed upstream.

        Inputs:
          - request: parsed client query (must carry a question).

        Outputs:
          - ForwardResult with the raw reply bytes.

        Raises:
          - NoUpstreamError when no route matches.
          - TransportError subclasses on network failure.
        """
        qname = str(request.q.qname)
        route = self.select(qname)
        self._log.debug(
            "[%04x] will use %s for %s", request.header.id, route.address, qname
        )
        wire = request.pack()
        start = time.monotonic()
        if route.protocol == "tcp-tls":
            reply = dot_query(
                route.host,
                route.port,
                wire,
                timeout=route.timeout,
                ssl_context=self._tls_context,
            )
        elif route.protocol == "tcp":
            reply = tcp_query(route.host, route.port, wire, timeout=route.timeout)
        else:
            reply = udp_query(route.host, route.port, wire, timeout=route.timeout)
        return ForwardResult(reply, time.monotonic() - start, route)
