"""DNS message handling for the sinkhole, built on scapy.

parse_query() extracts the first question of a client query;
build_sinkhole_response() synthesizes the answer returned for blocked
names: the query header echoed with QR set and RCODE 0, the question,
and for A / ANY queries a single `A 0.0.0.0` record with TTL 60.
"""

from __future__ import annotations

import logging

from scapy.all import DNS, DNSQR, DNSRR

from app.core.classification.domain_classifier import normalize_domain
from app.models.sinkhole import (
    DNS_NO_QUESTION,
    DNS_PARSE_ERROR,
    DnsQuestion,
    PacketError,
)

logger = logging.getLogger(__name__)

DNS_PORT = 53
DOT_PORT = 853
DNS_HEADER_LENGTH = 12

QTYPE_A = 1
QTYPE_ANY = 255
SINKHOLE_ADDRESS = "0.0.0.0"
SINKHOLE_TTL = 60


def parse_query(payload: bytes) -> tuple[DNS, DnsQuestion]:
    """Parse a DNS query payload.

    Returns:
        (scapy DNS message, first question)

    Raises:
        PacketError: payload too short, unparseable, without question
            or with an empty question name
    """
    if len(payload) < DNS_HEADER_LENGTH:
        raise PacketError(DNS_PARSE_ERROR, "DNS payload shorter than header", {"length": len(payload)})

    try:
        message = DNS(payload)
    except Exception as e:
        raise PacketError(DNS_PARSE_ERROR, "Unparseable DNS payload", {"error": str(e)}) from e

    if message.qdcount == 0 or DNSQR not in message:
        raise PacketError(DNS_NO_QUESTION, "DNS query without question")

    question = message[DNSQR]
    qname = question.qname or b""
    if isinstance(qname, str):
        qname = qname.encode("utf-8")
    domain = normalize_domain(qname.decode("utf-8", errors="ignore"))
    if not domain:
        raise PacketError(DNS_PARSE_ERROR, "DNS question without a usable name", {"qname": qname.hex()})

    return message, DnsQuestion(
        domain=domain,
        qname=qname,
        qtype=int(question.qtype),
        qclass=int(question.qclass),
    )


def build_sinkhole_response(query: DNS, question: DnsQuestion) -> bytes:
    """Synthesize the blocked-name response for `query`."""
    sections = {}
    if question.qtype in (QTYPE_A, QTYPE_ANY):
        sections["an"] = DNSRR(
            rrname=question.qname,
            type="A",
            rclass=question.qclass,
            ttl=SINKHOLE_TTL,
            rdata=SINKHOLE_ADDRESS,
        )

    response = DNS(
        id=query.id,
        qr=1,
        opcode=query.opcode,
        aa=query.aa,
        tc=query.tc,
        rd=query.rd,
        ra=query.ra,
        z=query.z,
        ad=query.ad,
        cd=query.cd,
        rcode=0,
        qdcount=1,
        ancount=len(sections),
        nscount=0,
        arcount=0,
        qd=DNSQR(qname=question.qname, qtype=question.qtype, qclass=question.qclass),
        **sections,
    )
    return bytes(response)
