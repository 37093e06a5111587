"""Upstream resolver forwarding for allowed DNS queries.

Allowed queries are relayed verbatim over one dedicated UDP socket. The
socket is "protected" before use so its own traffic leaves through the
physical uplink instead of looping back into the TUN routes.
"""

from __future__ import annotations

import logging
import socket
from collections.abc import Callable

from app.core.sinkhole.interface_detector import detect_interfaces, get_uplink_interface
from app.services.dns_settings import DnsSettings

logger = logging.getLogger(__name__)

DNS_PORT = 53
FORWARD_TIMEOUT_MS = 3000
MAX_DATAGRAM_SIZE = 32767

SocketProtector = Callable[[socket.socket], None]


def bind_to_device(interface_name: str) -> SocketProtector:
    """Protector binding the socket to a network device (SO_BINDTODEVICE).

    Requires CAP_NET_RAW on Linux.
    """
    def _protect(sock: socket.socket) -> None:
        sock.setsockopt(
            socket.SOL_SOCKET,
            socket.SO_BINDTODEVICE,
            interface_name.encode("utf-8") + b"\x00",
        )
        logger.debug(f"Upstream socket bound to device (interface={interface_name})")

    return _protect


def uplink_protector(interface_name: str = "auto") -> SocketProtector:
    """Protector binding to the configured uplink, or the detected one for "auto".

    Resolution happens when the socket is opened, not at configuration time.
    """
    def _protect(sock: socket.socket) -> None:
        name = interface_name
        if name == "auto":
            uplink = get_uplink_interface(detect_interfaces())
            if uplink is None:
                logger.warning("No uplink detected, upstream socket left unbound")
                return
            name = uplink.name
        bind_to_device(name)(sock)

    return _protect


class UpstreamForwarder:
    """Forwards raw DNS queries and waits for exactly one reply."""

    def __init__(
        self,
        settings: DnsSettings,
        timeout_ms: int = FORWARD_TIMEOUT_MS,
        protect: SocketProtector | None = None,
        port: int = DNS_PORT,
    ) -> None:
        self._settings = settings
        self._timeout_ms = timeout_ms
        self._protect = protect
        self._port = port
        self._socket: socket.socket | None = None

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    def open(self) -> None:
        """Create and protect the dedicated socket.

        Raises:
            OSError: socket creation or protection failed
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            if self._protect is not None:
                self._protect(sock)
            sock.settimeout(self._timeout_ms / 1000.0)
        except OSError:
            sock.close()
            raise
        self._socket = sock
        logger.info(
            f"Upstream socket opened (upstream={self._settings.upstream}, "
            f"timeout_ms={self._timeout_ms})"
        )

    def forward(self, query: bytes) -> bytes | None:
        """Send `query` to the current upstream and return its reply.

        Returns None on timeout, I/O error, or when the socket is closed.
        """
        sock = self._socket
        if sock is None:
            return None

        upstream = (self._settings.upstream, self._port)
        try:
            sock.sendto(query, upstream)
            reply, _ = sock.recvfrom(MAX_DATAGRAM_SIZE)
            return reply
        except socket.timeout:
            logger.warning(f"Upstream DNS timeout (upstream={upstream[0]})")
            return None
        except OSError as e:
            logger.warning(f"Upstream DNS error (upstream={upstream[0]}, error={e})")
            return None

    def close(self) -> None:
        sock, self._socket = self._socket, None
        if sock is not None:
            sock.close()
            logger.info("Upstream socket closed")
