"""Interface Detector Module for KIDSHIELD.

Detects the physical uplink the protected upstream socket is bound to,
and reports the state of the sinkhole TUN device.
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from enum import Enum

import psutil

logger = logging.getLogger(__name__)

# Uplink preference, by interface type
UPLINK_PRIORITY = ("ethernet", "wifi", "cellular")

# Interfaces never used as uplink
EXCLUDED_INTERFACES = {"lo", "localhost", "docker0", "br-", "veth"}
TUN_PREFIXES = ("tun", "kidshield")


class InterfaceType(Enum):
    """Network interface types known to KIDSHIELD."""

    ETHERNET = "ethernet"
    WIFI = "wifi"
    CELLULAR = "cellular"
    TUN = "tun"
    UNKNOWN = "unknown"


@dataclass
class NetworkInterface:
    """Represents a network interface with its properties.

    Attributes:
        name: Interface name (e.g., 'eth0', 'wlan0', 'kidshield0')
        type: InterfaceType enum value
        ip_address: IPv4 address or None if not assigned
        is_up: Whether the interface is up
        is_connected: Whether the interface is up with an IPv4 address
    """

    name: str
    type: InterfaceType
    ip_address: str | None
    is_up: bool
    is_connected: bool

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type.value,
            "ip_address": self.ip_address,
            "is_up": self.is_up,
            "is_connected": self.is_connected,
        }


def _get_interface_type(name: str) -> InterfaceType:
    """Determine the interface type from its name."""
    if name.startswith(TUN_PREFIXES):
        return InterfaceType.TUN
    if name.startswith(("eth", "enp", "eno", "ens")):
        return InterfaceType.ETHERNET
    if name.startswith(("wlan", "wlp")):
        return InterfaceType.WIFI
    if name.startswith(("rmnet", "wwan", "ccmni")):
        return InterfaceType.CELLULAR
    return InterfaceType.UNKNOWN


def _is_excluded_interface(name: str) -> bool:
    if name in EXCLUDED_INTERFACES:
        return True
    return any(name.startswith(prefix) for prefix in EXCLUDED_INTERFACES)


def detect_interfaces() -> list[NetworkInterface]:
    """Detect available network interfaces (loopback and bridges excluded)."""
    interfaces = []

    try:
        addrs = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
    except OSError as e:
        logger.error(f"Error detecting interfaces (error={str(e)})")
        return interfaces

    for name, addr_list in addrs.items():
        if _is_excluded_interface(name):
            continue

        ip_address = None
        for addr in addr_list:
            if addr.family == socket.AF_INET:
                ip_address = addr.address
                break

        interface_stats = stats.get(name)
        is_up = interface_stats.isup if interface_stats else False

        interfaces.append(NetworkInterface(
            name=name,
            type=_get_interface_type(name),
            ip_address=ip_address,
            is_up=is_up,
            is_connected=is_up and ip_address is not None,
        ))
        logger.debug(
            f"Interface detected (name={name}, ip={ip_address}, up={is_up})"
        )

    return interfaces


def get_uplink_interface(
    interfaces: list[NetworkInterface],
) -> NetworkInterface | None:
    """Pick the physical uplink: connected, not a TUN, by type priority."""
    candidates = [
        i for i in interfaces
        if i.is_connected and i.type is not InterfaceType.TUN
    ]
    if not candidates:
        logger.warning("No connected uplink interface found")
        return None

    for type_name in UPLINK_PRIORITY:
        for interface in candidates:
            if interface.type.value == type_name:
                logger.info(
                    f"Uplink interface selected (name={interface.name}, "
                    f"ip={interface.ip_address})"
                )
                return interface

    first = candidates[0]
    logger.info(f"Using first available uplink (name={first.name}, ip={first.ip_address})")
    return first
