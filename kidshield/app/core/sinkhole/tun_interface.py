"""Virtual network interface abstraction and the Linux TUN device.

The sinkhole reads raw IPv4 datagrams from a VirtualInterface and writes
complete IPv4 datagrams back. TunInterface opens /dev/net/tun in
IFF_TUN | IFF_NO_PI mode and configures its address and the /32 resolver
routes with iproute2.
"""

from __future__ import annotations

import logging
import os
import select
import struct
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Iterable

logger = logging.getLogger(__name__)

TUN_DEVICE_PATH = "/dev/net/tun"
TUNSETIFF = 0x400454CA
IFF_TUN = 0x0001
IFF_NO_PI = 0x1000

DEFAULT_TUN_NAME = "kidshield0"
DEFAULT_LOCAL_ADDRESS = "10.0.0.2"
DEFAULT_MTU = 1500

# Only these public resolvers are routed into the interface
RESOLVER_ROUTES: tuple[str, ...] = (
    "8.8.8.8",
    "8.8.4.4",
    "1.1.1.1",
    "1.0.0.1",
    "208.67.222.222",
    "208.67.220.220",
)


class VirtualInterface(ABC):
    """Byte-stream device carrying raw IPv4 datagrams."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Interface name."""

    @abstractmethod
    def read(self, size: int) -> bytes:
        """Read one datagram; b"" when nothing arrived within the poll interval."""

    @abstractmethod
    def write(self, datagram: bytes) -> int:
        """Write one complete IPv4 datagram."""

    @abstractmethod
    def close(self) -> None:
        """Release the device. Must be idempotent."""


def _run_ip(*args: str) -> None:
    cmd = ["ip", *args]
    logger.debug(f"Running iproute2 (cmd={' '.join(cmd)})")
    subprocess.run(cmd, check=True, capture_output=True, text=True)


def configure_interface(
    name: str,
    address: str,
    routes: Iterable[str],
    mtu: int = DEFAULT_MTU,
) -> None:
    """Assign the local address, bring the link up and add /32 routes.

    Raises:
        subprocess.CalledProcessError: an ip command failed
        FileNotFoundError: iproute2 is not installed
    """
    _run_ip("addr", "replace", f"{address}/32", "dev", name)
    _run_ip("link", "set", "dev", name, "mtu", str(mtu), "up")
    for route in routes:
        _run_ip("route", "replace", f"{route}/32", "dev", name)


class TunInterface(VirtualInterface):
    """Linux TUN device."""

    def __init__(self, fd: int, name: str, poll_interval: float = 1.0) -> None:
        self._fd: int | None = fd
        self._name = name
        self._poll_interval = poll_interval

    @classmethod
    def open(
        cls,
        name: str = DEFAULT_TUN_NAME,
        address: str = DEFAULT_LOCAL_ADDRESS,
        routes: Iterable[str] = RESOLVER_ROUTES,
        mtu: int = DEFAULT_MTU,
    ) -> TunInterface:
        """Create the TUN device and configure it.

        Raises:
            OSError: device creation failed (missing CAP_NET_ADMIN, no tun module)
            subprocess.CalledProcessError: address/route configuration failed
        """
        import fcntl

        fd = os.open(TUN_DEVICE_PATH, os.O_RDWR)
        try:
            ifr = struct.pack("16sH", name.encode("utf-8"), IFF_TUN | IFF_NO_PI)
            fcntl.ioctl(fd, TUNSETIFF, ifr)
            configure_interface(name, address, routes, mtu)
        except (OSError, subprocess.CalledProcessError):
            os.close(fd)
            raise

        logger.info(f"TUN interface established (name={name}, address={address})")
        return cls(fd, name)

    @property
    def name(self) -> str:
        return self._name

    def read(self, size: int) -> bytes:
        fd = self._fd
        if fd is None:
            raise OSError("TUN interface closed")
        readable, _, _ = select.select([fd], [], [], self._poll_interval)
        if not readable:
            return b""
        return os.read(fd, size)

    def write(self, datagram: bytes) -> int:
        fd = self._fd
        if fd is None:
            raise OSError("TUN interface closed")
        return os.write(fd, datagram)

    def close(self) -> None:
        fd, self._fd = self._fd, None
        if fd is not None:
            os.close(fd)
            logger.info(f"TUN interface closed (name={self._name})")
