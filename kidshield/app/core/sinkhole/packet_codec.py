"""IPv4 / UDP codec for the virtual interface.

Parses the raw IPv4 datagrams read from the TUN device and builds the
UDP reply datagrams written back to it, both through scapy layers.
The fixed header is dissected first so lengths can be validated before
the transport layer is touched; options are skipped using the IHL.
"""

from __future__ import annotations

from scapy.all import IP, TCP, UDP, Raw

from app.models.sinkhole import (
    PACKET_LENGTH_MISMATCH,
    PACKET_NOT_IPV4,
    PACKET_TRUNCATED,
    Ipv4Packet,
    PacketError,
)

IPV4_HEADER_LENGTH = 20
UDP_HEADER_LENGTH = 8
PORTS_LENGTH = 4
PROTO_TCP = 6
PROTO_UDP = 17
REPLY_TTL = 64


def parse_ipv4(data: bytes) -> Ipv4Packet:
    """Parse one IPv4 datagram.

    Bytes beyond the declared total length are ignored. The payload is
    sliced from the original bytes so it is forwarded exactly as read.

    Raises:
        PacketError: not IPv4, truncated, or inconsistent lengths
    """
    if len(data) < IPV4_HEADER_LENGTH:
        raise PacketError(PACKET_TRUNCATED, "Packet shorter than an IPv4 header", {"length": len(data)})

    header = IP(data[:IPV4_HEADER_LENGTH])
    if header.version != 4:
        raise PacketError(PACKET_NOT_IPV4, "Not an IPv4 packet", {"version": header.version})

    header_length = header.ihl * 4
    total_length = header.len
    if header_length < IPV4_HEADER_LENGTH or total_length < header_length or total_length > len(data):
        raise PacketError(
            PACKET_LENGTH_MISMATCH,
            "Declared lengths inconsistent with bytes available",
            {"ihl": header_length, "total_length": total_length, "available": len(data)},
        )

    segment = data[header_length:total_length]
    source_port = destination_port = None
    payload = b""

    if header.proto == PROTO_UDP:
        if len(segment) < UDP_HEADER_LENGTH:
            raise PacketError(
                PACKET_TRUNCATED,
                "UDP header truncated",
                {"total_length": total_length, "ihl": header_length},
            )
        udp = UDP(segment[:UDP_HEADER_LENGTH])
        source_port, destination_port = udp.sport, udp.dport
        payload = segment[UDP_HEADER_LENGTH:]
    elif header.proto == PROTO_TCP and len(segment) >= PORTS_LENGTH:
        tcp = TCP(segment)
        source_port, destination_port = tcp.sport, tcp.dport

    return Ipv4Packet(
        header_length=header_length,
        total_length=total_length,
        protocol=header.proto,
        source_ip=header.src,
        destination_ip=header.dst,
        source_port=source_port,
        destination_port=destination_port,
        payload=payload,
    )


def build_udp_reply(request: Ipv4Packet, payload: bytes) -> bytes:
    """Build the reply datagram for a UDP request.

    Addresses and ports are swapped; 20-byte header without options,
    TTL 64, UDP checksum 0 (optional over IPv4). scapy fills in the
    lengths and the header checksum.
    """
    reply = (
        IP(src=request.destination_ip, dst=request.source_ip, ttl=REPLY_TTL, id=0, flags=0)
        / UDP(sport=request.destination_port or 0, dport=request.source_port or 0, chksum=0)
        / Raw(load=payload)
    )
    return bytes(reply)
