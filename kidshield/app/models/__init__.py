# Data models package

from app.models.policy import (
    BlockPolicy,
    PolicyError,
    TemporaryUnlock,
    Verdict,
    POLICY_INVALID_VALUE,
    POLICY_NOT_AUTHORIZED,
    POLICY_RELOAD_FAILED,
    POLICY_UNKNOWN_KEY,
)
from app.models.foreground import (
    ActionType,
    EnforcementAction,
    EventOutcome,
    FocusEvent,
    FocusEventKind,
    ForegroundState,
    HostProfile,
)
from app.models.sinkhole import (
    BlockedDomainEvent,
    DnsQuestion,
    Ipv4Packet,
    PacketError,
    PacketOutcome,
    PacketResult,
    SinkholeError,
    SinkholeStatus,
    SINKHOLE_ALREADY_RUNNING,
    SINKHOLE_INTERFACE_FAILED,
    SINKHOLE_NOT_AUTHORIZED,
    SINKHOLE_SOCKET_FAILED,
)

__all__ = [
    # Policy models (Story 1.2)
    "BlockPolicy",
    "PolicyError",
    "TemporaryUnlock",
    "Verdict",
    "POLICY_INVALID_VALUE",
    "POLICY_NOT_AUTHORIZED",
    "POLICY_RELOAD_FAILED",
    "POLICY_UNKNOWN_KEY",
    # Foreground models (Story 2.1)
    "ActionType",
    "EnforcementAction",
    "EventOutcome",
    "FocusEvent",
    "FocusEventKind",
    "ForegroundState",
    "HostProfile",
    # Sinkhole models (Story 3.1)
    "BlockedDomainEvent",
    "DnsQuestion",
    "Ipv4Packet",
    "PacketError",
    "PacketOutcome",
    "PacketResult",
    "SinkholeError",
    "SinkholeStatus",
    "SINKHOLE_ALREADY_RUNNING",
    "SINKHOLE_INTERFACE_FAILED",
    "SINKHOLE_NOT_AUTHORIZED",
    "SINKHOLE_SOCKET_FAILED",
]
