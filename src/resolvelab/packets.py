from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from dnslib import AAAA, CNAME, MX, NS, QTYPE, RCODE, RR, SOA, TXT, A, DNSRecord
from dnslib.dns import DNSError

from .models import Record

"""Illustrative DNS message summaries built with dnslib.

Brief:
  Query and response stages carry a small JSON view of the DNS message the
  stage stands for (header flags, question, answers, encoded size). Messages
  are built with dnslib so flags and sizes are those of a real encoding; they
  are never transmitted.
"""

logger = logging.getLogger(__name__)


def _rdata_for(record: Record):
    """Brief: Map a Record onto the matching dnslib rdata, or None."""

    d = record.data
    if record.type == "A":
        return A(d["address"])
    if record.type == "AAAA":
        return AAAA(d["address"])
    if record.type == "CNAME":
        return CNAME(d["target"])
    if record.type == "NS":
        return NS(d["target"])
    if record.type == "MX":
        return MX(d["exchange"], int(d.get("priority", 10)))
    if record.type == "TXT":
        return TXT(str(d["data"]))
    if record.type == "SOA":
        return SOA(
            d["mname"],
            d["rname"],
            (
                int(d.get("serial", 0)),
                int(d.get("refresh", 0)),
                int(d.get("retry", 0)),
                int(d.get("expire", 0)),
                int(d.get("minimum", 0)),
            ),
        )
    return None


def _summarize(msg: DNSRecord) -> Dict[str, Any]:
    h = msg.header
    return {
        "id": int(h.id),
        "type": "response" if h.qr else "query",
        "flags": {
            "qr": int(h.qr),
            "opcode": int(h.opcode),
            "aa": int(h.aa),
            "tc": int(h.tc),
            "rd": int(h.rd),
            "ra": int(h.ra),
            "rcode": RCODE[h.rcode],
        },
        "questions": [
            {
                "name": str(q.qname).rstrip("."),
                "type": QTYPE[q.qtype],
                "class": "IN",
            }
            for q in msg.questions
        ],
        "answers": [
            {
                "name": str(rr.rname).rstrip("."),
                "type": QTYPE[rr.rtype],
                "ttl": int(rr.ttl),
                "data": str(rr.rdata),
            }
            for rr in msg.rr
        ],
        "size": len(msg.pack()),
    }


def query_packet(
    domain: str,
    record_type: str,
    *,
    packet_id: int,
    recursion_desired: bool,
) -> Dict[str, Any]:
    """Brief: Summary of the query message for domain/record_type.

    Inputs:
      - domain: Query name.
      - record_type: Record type name.
      - packet_id: 16-bit message id.
      - recursion_desired: Sets RD (recursive mode) or clears it (iterative).

    Outputs:
      - dict with id, type, flags, questions, answers (empty) and size.
    """

    q = DNSRecord.question(domain, record_type)
    q.header.id = int(packet_id) & 0xFFFF
    q.header.rd = 1 if recursion_desired else 0
    return _summarize(q)


def response_packet(
    domain: str,
    record_type: str,
    records: Iterable[Record],
    *,
    packet_id: int,
    ttl: int,
    authoritative: bool,
    recursion_available: bool,
    recursion_desired: bool = True,
    rcode: str = "NOERROR",
) -> Dict[str, Any]:
    """Brief: Summary of the answer message carrying records.

    Inputs:
      - domain / record_type: Question echoed in the response.
      - records: Answer records; simulated placeholders are not encoded.
      - packet_id: 16-bit message id (matches the query).
      - ttl: TTL stamped on each answer.
      - authoritative: AA flag.
      - recursion_available: RA flag.
      - recursion_desired: RD flag echoed from the query.
      - rcode: Response code name, e.g. 'NOERROR' or 'NXDOMAIN'.

    Outputs:
      - dict with id, type, flags, questions, answers and size.
    """

    q = DNSRecord.question(domain, record_type)
    q.header.id = int(packet_id) & 0xFFFF
    q.header.rd = 1 if recursion_desired else 0
    r = q.reply()
    r.header.aa = 1 if authoritative else 0
    r.header.ra = 1 if recursion_available else 0
    r.header.rcode = getattr(RCODE, rcode)

    for record in records:
        if record.simulated:
            continue
        try:
            rdata = _rdata_for(record)
        except (DNSError, ValueError, KeyError, TypeError) as exc:
            logger.debug("Skipping %s record in packet summary: %s", record.type, exc)
            continue
        if rdata is None:
            continue
        r.add_answer(
            RR(domain, getattr(QTYPE, record.type), rdata=rdata, ttl=max(0, int(ttl)))
        )
    return _summarize(r)


def referral_packet(
    zone: str,
    nameservers: List[str],
    glue: Optional[Dict[str, str]],
    *,
    domain: str,
    record_type: str,
    packet_id: int,
    ttl: int = 172800,
) -> Dict[str, Any]:
    """Brief: Summary of a referral: empty answer, NS authority plus glue.

    Inputs:
      - zone: Delegated zone the NS records are owned by.
      - nameservers: Nameserver host names.
      - glue: Optional mapping of nameserver name to IPv4 address.
      - domain / record_type: Original question.
      - packet_id: 16-bit message id.
      - ttl: TTL stamped on NS and glue records.

    Outputs:
      - dict as from response_packet, plus 'authority' and 'additional' lists.
    """

    q = DNSRecord.question(domain, record_type)
    q.header.id = int(packet_id) & 0xFFFF
    q.header.rd = 0
    r = q.reply()
    r.header.aa = 0
    r.header.ra = 0
    for ns in nameservers:
        r.add_auth(RR(zone, QTYPE.NS, rdata=NS(ns), ttl=ttl))
    for name, address in (glue or {}).items():
        try:
            r.add_ar(RR(name, QTYPE.A, rdata=A(address), ttl=ttl))
        except (DNSError, ValueError) as exc:
            logger.debug("Skipping glue %s=%s: %s", name, address, exc)
    out = _summarize(r)
    out["authority"] = [
        {"name": str(rr.rname).rstrip("."), "type": "NS", "data": str(rr.rdata)}
        for rr in r.auth
    ]
    out["additional"] = [
        {"name": str(rr.rname).rstrip("."), "type": "A", "data": str(rr.rdata)}
        for rr in r.ar
    ]
    return out
