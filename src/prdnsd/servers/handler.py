from __future__ import annotations

import logging
from typing import Optional

from dnslib import CLASS, PTR, QTYPE, RCODE, RR, DNSError, DNSHeader, DNSRecord

from ..cache.passive import PassiveCache, reverse_name
from ..debounce import DebounceGate
from ..errors import (
    NoUpstreamError,
    ProtocolViolation,
    TransportError,
    UpstreamProtocolError,
)
from ..upstream.router import UpstreamRouter

logger = logging.getLogger(__name__)

PTR_TTL = 300


def make_servfail(request: DNSRecord) -> DNSRecord:
    """Brief: Build a SERVFAIL reply echoing the request id, RD flag and question.

    Inputs:
      - request: parsed client query.

    Outputs:
      - DNSRecord with QR and RA set and rcode SERVFAIL.
    """
    header = DNSHeader(
        id=request.header.id,
        qr=1,
        rd=request.header.rd,
        ra=1,
        rcode=RCODE.SERVFAIL,
    )
    return DNSRecord(header, questions=list(request.questions))


def make_ptr_answer(request: DNSRecord, target: str) -> DNSRecord:
    """Brief: Build a PTR answer for the request's question pointing at ``target``."""
    q = request.q
    header = DNSHeader(id=request.header.id, qr=1, rd=request.header.rd, ra=1)
    return DNSRecord(
        header,
        q=q,
        a=RR(q.qname, QTYPE.PTR, CLASS.IN, PTR_TTL, PTR(target)),
    )


class RequestHandler:
    """Brief: Per-query decision pipeline shared by every listener.

    Steps, in order:
      1. Debounce gate (connectionless clients only); denial drops the query.
      2. Queries without a question are dropped.
      3. PTR/IN questions present in the passive cache are answered locally.
      4. Queries with RD=0 get SERVFAIL; nothing is served authoritatively.
      5. Everything else is forwarded; A/AAAA answers feed the passive cache
         and the upstream reply is returned byte for byte.
      6. Transport failures and missing routes give SERVFAIL; an undecodable
         upstream reply drops the query.

    Inputs (constructor):
      - router: UpstreamRouter used for forwarding.
      - cache: PassiveCache consulted and populated.
      - gate: optional DebounceGate; None disables rate limiting.
      - logger: optional logger; defaults to this module's logger.

    Thread-safety: instances hold no per-request state and may be called from
    any number of threads at once.
    """

    def __init__(
        self,
        router: UpstreamRouter,
        cache: PassiveCache,
        gate: Optional[DebounceGate] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.router = router
        self.cache = cache
        self.gate = gate
        self._log = logger or logging.getLogger(__name__)

    def resolve_bytes(
        self, data: bytes, client_ip: str, connectionless: bool
    ) -> Optional[bytes]:
        """Brief: Decode a wire query and run it through handle().

        Inputs:
          - data: wire-format DNS query.
          - client_ip: sender IP address.
          - connectionless: True for UDP.

        Outputs:
          - bytes reply or None; undecodable input yields None.
        """
        try:
            request = DNSRecord.parse(data)
        except (DNSError, ValueError, IndexError) as e:
            self._log.debug("Undecodable query from %s: %s", client_ip, e)
            return None
        return self.handle(request, client_ip, connectionless)

    def handle(
        self, request: DNSRecord, client_ip: str, connectionless: bool
    ) -> Optional[bytes]:
        """Brief: Decide how to answer one decoded query.

        Inputs:
          - request: parsed client query.
          - client_ip: sender IP address (port excluded).
          - connectionless: True for UDP.

        Outputs:
          - bytes: wire-format reply to send back.
          - None: send nothing.
        """
        if connectionless and self.gate is not None:
            if not self.gate.allow(client_ip):
                self._log.warning("Dropping, debounce check failed for %s", client_ip)
                return None

        try:
            self._check_question(request, client_ip)
        except ProtocolViolation as e:
            self._log.warning("%s", e)
            return None

        q = request.q
        self._log.info("Query from %s: %s", client_ip, q.toZone().strip())

        if q.qtype == QTYPE.PTR and q.qclass == CLASS.IN:
            qname = str(q.qname)
            target = self.cache.get(qname.lower())
            if target is not None:
                self._log.info("Replying with cached PTR: %s = %s", qname, target)
                return make_ptr_answer(request, target).pack()
            self._log.debug("PTR not in cache: %s", qname)

        if not request.header.rd:
            self._log.warning(
                "[%04x] Client %s doesn't want recursion",
                request.header.id,
                client_ip,
            )
            return make_servfail(request).pack()

        try:
            return self._forward(request)
        except (TransportError, NoUpstreamError) as e:
            self._log.warning(
                "[%04x] Error getting response: %s", request.header.id, e
            )
            return make_servfail(request).pack()
        except UpstreamProtocolError as e:
            self._log.warning(
                "[%04x] Dropping, bad upstream response: %s", request.header.id, e
            )
            return None

    @staticmethod
    def _check_question(request: DNSRecord, client_ip: str) -> None:
        if not request.questions:
            raise ProtocolViolation(f"Query without questions from {client_ip}")

    def _forward(self, request: DNSRecord) -> bytes:
        result = self.router.forward(request)
        try:
            reply = DNSRecord.parse(result.wire)
        except (DNSError, ValueError, IndexError) as e:
            raise UpstreamProtocolError(
                f"cannot decode reply from {result.route.address}: {e}"
            ) from e

        self._log.debug(
            "[%04x] Got response from %s (rtt=%.1fms)\n%s",
            request.header.id,
            result.route.address,
            result.rtt * 1000.0,
            reply,
        )
        self._remember_addresses(str(request.q.qname), reply)
        return result.wire

    def _remember_addresses(self, qname: str, reply: DNSRecord) -> None:
        """Brief: Store reverse mappings for every A/AAAA record in the answer section."""
        for rr in reply.rr:
            if rr.rtype not in (QTYPE.A, QTYPE.AAAA):
                continue
            address = str(rr.rdata)
            try:
                ptr = reverse_name(address)
            except ValueError:
                self._log.warning("Could not transform to reverse address: %s", rr)
                continue
            self.cache.put(ptr, qname)
            self._log.info("caching answer for %s as %s (%s)", address, qname, ptr)
