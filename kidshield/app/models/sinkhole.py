"""DNS sinkhole data models for KIDSHIELD.

Defines dataclasses and enums for the virtual interface packet loop.

Story 3.1: Sinkhole DNS
- Ipv4Packet (parsed datagram view)
- DnsQuestion (first question of a query)
- PacketOutcome / PacketResult (per-packet result, logged then discarded)
- SinkholeStatus lifecycle enum
- BlockedDomainEvent for the notification surface

Lessons Learned Epic 1/2/3:
- Use Python 3.10+ type hints (X | None, not Optional[X])
- Errors carry code/message/details (to_dict for the API envelope)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class SinkholeStatus(Enum):
    """Lifecycle of the DNS sinkhole engine."""

    IDLE = "idle"
    ESTABLISHING = "establishing"
    RUNNING = "running"
    STOPPING = "stopping"


class PacketOutcome(Enum):
    """What happened to one packet read from the interface."""

    BLOCKED = "blocked"
    FORWARDED = "forwarded"
    NO_UPSTREAM_REPLY = "no_upstream_reply"
    DROPPED_MALFORMED = "dropped_malformed"
    DROPPED_DOT = "dropped_dot"
    DROPPED_UNSUPPORTED = "dropped_unsupported"
    DROPPED_NO_QUESTION = "dropped_no_question"


@dataclass(frozen=True)
class Ipv4Packet:
    """Parsed IPv4 datagram.

    Attributes:
        header_length: IHL in bytes
        total_length: Declared total length (bytes kept from the read)
        protocol: IP protocol number (6 = TCP, 17 = UDP)
        source_ip: Dotted source address
        destination_ip: Dotted destination address
        source_port: Transport source port, None when not UDP/TCP
        destination_port: Transport destination port, None when not UDP/TCP
        payload: Transport payload (UDP data after the 8-byte header)
    """

    header_length: int
    total_length: int
    protocol: int
    source_ip: str
    destination_ip: str
    source_port: int | None = None
    destination_port: int | None = None
    payload: bytes = b""


@dataclass(frozen=True)
class DnsQuestion:
    """First question of a DNS query."""

    domain: str
    qname: bytes
    qtype: int
    qclass: int


@dataclass
class PacketResult:
    """Result of processing one packet.

    Attributes:
        outcome: PacketOutcome
        reply: Complete IPv4 datagram to write back, or None
        domain: Queried domain when a DNS question was parsed
    """

    outcome: PacketOutcome
    reply: bytes | None = None
    domain: str | None = None


@dataclass(frozen=True)
class BlockedDomainEvent:
    """Notification emitted for every blocked DNS query."""

    domain: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {"domain": self.domain, "timestamp": self.timestamp}


class SinkholeError(Exception):
    """Exception for sinkhole lifecycle errors.

    Attributes:
        code: Error code (e.g., 'SINKHOLE_ALREADY_RUNNING')
        message: Human-readable error message
        details: Additional error details
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON error response."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class PacketError(SinkholeError):
    """Raised by the codecs for packets that must be dropped."""


# Error code constants
SINKHOLE_ALREADY_RUNNING = "SINKHOLE_ALREADY_RUNNING"
SINKHOLE_INTERFACE_FAILED = "SINKHOLE_INTERFACE_FAILED"
SINKHOLE_SOCKET_FAILED = "SINKHOLE_SOCKET_FAILED"
SINKHOLE_NOT_AUTHORIZED = "SINKHOLE_NOT_AUTHORIZED"
PACKET_TRUNCATED = "PACKET_TRUNCATED"
PACKET_NOT_IPV4 = "PACKET_NOT_IPV4"
PACKET_LENGTH_MISMATCH = "PACKET_LENGTH_MISMATCH"
DNS_PARSE_ERROR = "DNS_PARSE_ERROR"
DNS_NO_QUESTION = "DNS_NO_QUESTION"
