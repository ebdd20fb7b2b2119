"""Single-shot DNS query tool.

Sends one question to a server over UDP, TCP or DNS-over-TLS and prints the
decoded reply as indented JSON. Handy for poking a running prdnsd by hand.

Example:
    prdnsd-query --server 127.0.0.1:5353 25.0.0.127.in-addr.arpa. PTR
    prdnsd-query --netproto tcp-tls --server 127.0.0.1:8533 --capem server.crt google.com. A
"""

from __future__ import annotations

import argparse
import json
import logging
import random
import sys
import time
from typing import Any, Dict, List, Optional

from dnslib import CLASS, QTYPE, RCODE, DNSError, DNSHeader, DNSQuestion, DNSRecord

from .config.durations import parse_duration
from .config.logging_config import init_logging
from .errors import ConfigError, TransportError
from .upstream.router import split_host_port
from .upstream.transports import dot_query, tcp_query, udp_query

logger = logging.getLogger("prdnsd.query")

_PROTOCOLS = ("udp", "tcp", "tcp-tls")


def build_query(
    name: str, qtype: str = "ANY", qclass: str = "IN", recurse: bool = True
) -> DNSRecord:
    """Brief: Build a single-question query with a random id.

    Inputs:
      - name: query name.
      - qtype: record type mnemonic (e.g. 'A', 'PTR', 'ANY').
      - qclass: class mnemonic (e.g. 'IN').
      - recurse: value of the RD flag.

    Outputs:
      - DNSRecord.

    Raises:
      - ConfigError for unknown type or class mnemonics.
    """
    type_code = QTYPE.reverse.get(qtype.upper())
    if type_code is None:
        raise ConfigError(
            f"Don't know how to handle type: {qtype} "
            f"(available: {', '.join(sorted(QTYPE.reverse))})"
        )
    class_code = CLASS.reverse.get(qclass.upper())
    if class_code is None:
        raise ConfigError(
            f"Don't know how to handle class: {qclass} "
            f"(available: {', '.join(sorted(CLASS.reverse))})"
        )
    header = DNSHeader(id=random.randint(0, 0xFFFF), rd=int(recurse))
    return DNSRecord(header, q=DNSQuestion(name, type_code, class_code))


def exchange(
    request: DNSRecord,
    server: str,
    netproto: str = "udp",
    *,
    timeout: Optional[float] = None,
    ca_file: Optional[str] = None,
) -> DNSRecord:
    """Brief: Send ``request`` to ``server`` and decode the reply.

    Inputs:
      - request: query to send.
      - server: 'host:port' or '[v6]:port'.
      - netproto: 'udp', 'tcp' or 'tcp-tls'.
      - timeout: seconds; None waits forever.
      - ca_file: CA bundle for verifying a tcp-tls server.

    Outputs:
      - DNSRecord reply.

    Raises:
      - TransportError subclasses on network failure, DNSError on a bad reply.
    """
    default_port = 853 if netproto == "tcp-tls" else 53
    host, port = split_host_port(server, default_port)
    wire = request.pack()
    if netproto == "tcp-tls":
        data = dot_query(host, port, wire, ca_file=ca_file, timeout=timeout)
    elif netproto == "tcp":
        data = tcp_query(host, port, wire, timeout=timeout)
    else:
        data = udp_query(host, port, wire, timeout=timeout)
    return DNSRecord.parse(data)


def _rr_to_dict(rr) -> Dict[str, Any]:
    return {
        "name": str(rr.rname),
        "type": QTYPE.get(rr.rtype, str(rr.rtype)),
        "class": CLASS.get(rr.rclass, str(rr.rclass)),
        "ttl": rr.ttl,
        "rdata": str(rr.rdata),
    }


def record_to_dict(record: DNSRecord) -> Dict[str, Any]:
    """Brief: Render a DNS message as plain JSON-serializable data.

    Inputs:
      - record: decoded DNS message.

    Outputs:
      - dict with 'header', 'question', 'answer', 'authority' and 'additional'.
    """
    h = record.header
    return {
        "header": {
            "id": h.id,
            "response": bool(h.qr),
            "opcode": h.opcode,
            "authoritative": bool(h.aa),
            "truncated": bool(h.tc),
            "recursion_desired": bool(h.rd),
            "recursion_available": bool(h.ra),
            "rcode": RCODE.get(h.rcode, str(h.rcode)),
        },
        "question": [
            {
                "name": str(q.qname),
                "type": QTYPE.get(q.qtype, str(q.qtype)),
                "class": CLASS.get(q.qclass, str(q.qclass)),
            }
            for q in record.questions
        ],
        "answer": [_rr_to_dict(rr) for rr in record.rr],
        "authority": [_rr_to_dict(rr) for rr in record.auth],
        "additional": [_rr_to_dict(rr) for rr in record.ar],
    }


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prdnsd-query",
        description="Send one DNS query and print the reply as JSON",
    )
    parser.add_argument("--norecurse", action="store_true", help="Disable recursion")
    parser.add_argument("--verbose", action="store_true", help="Operate verbosely")
    parser.add_argument(
        "--netproto", default="udp", choices=_PROTOCOLS, help="Protocol to use"
    )
    parser.add_argument("--timeout", default="", help="Timeout (e.g. 2s, 500ms)")
    parser.add_argument(
        "--server", default="127.0.0.1:53", help="DNS server to query"
    )
    parser.add_argument("--capem", default="", help="CA certificates for TLS")
    parser.add_argument("name", help="query name")
    parser.add_argument("qtype", nargs="?", default="ANY", help="record type")
    parser.add_argument("qclass", nargs="?", default="IN", help="record class")
    return parser


def main(argv: List[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    init_logging({"level": "debug" if args.verbose else "warning"})

    try:
        timeout = parse_duration(args.timeout) or None
        request = build_query(
            args.name, args.qtype, args.qclass, recurse=not args.norecurse
        )
    except ConfigError as e:
        logger.error("%s", e)
        return 2

    logger.debug("Sending request to %s:\n%s", args.server, request)
    start = time.monotonic()
    try:
        reply = exchange(
            request,
            args.server,
            args.netproto,
            timeout=timeout,
            ca_file=args.capem or None,
        )
    except (TransportError, ConfigError, DNSError) as e:
        logger.error("Response error: %s", e)
        return 1
    logger.debug("Response (rtt=%.1fms):\n%s", (time.monotonic() - start) * 1000.0, reply)

    json.dump(record_to_dict(reply), sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
