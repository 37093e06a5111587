"""Unit tests for the upstream DNS forwarder."""

import socket
import threading
from unittest.mock import MagicMock, patch

import pytest

from app.core.sinkhole.interface_detector import InterfaceType, NetworkInterface
from app.core.sinkhole.upstream import (
    UpstreamForwarder,
    bind_to_device,
    uplink_protector,
)
from app.services.dns_settings import DnsSettings


@pytest.fixture
def udp_server():
    """Local UDP socket standing in for the upstream resolver."""
    server = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    server.bind(("127.0.0.1", 0))
    server.settimeout(2.0)
    yield server
    server.close()


def _reply_once(server, transform):
    def _serve():
        try:
            data, addr = server.recvfrom(4096)
        except OSError:
            return
        server.sendto(transform(data), addr)

    thread = threading.Thread(target=_serve, daemon=True)
    thread.start()
    return thread


class TestUpstreamForwarder:
    """Tests for forward / open / close."""

    def _forwarder(self, server, timeout_ms=1000, protect=None):
        settings = DnsSettings(upstream="127.0.0.1")
        port = server.getsockname()[1]
        return UpstreamForwarder(settings, timeout_ms=timeout_ms, protect=protect, port=port)

    def test_forward_returns_reply_verbatim(self, udp_server):
        forwarder = self._forwarder(udp_server)
        forwarder.open()
        thread = _reply_once(udp_server, lambda data: b"reply:" + data)

        try:
            assert forwarder.forward(b"query") == b"reply:query"
        finally:
            forwarder.close()
            thread.join(timeout=2)

    def test_timeout_returns_none(self, udp_server):
        forwarder = self._forwarder(udp_server, timeout_ms=100)
        forwarder.open()
        try:
            assert forwarder.forward(b"query") is None
        finally:
            forwarder.close()

    def test_forward_when_closed(self, udp_server):
        forwarder = self._forwarder(udp_server)
        assert forwarder.is_open is False
        assert forwarder.forward(b"query") is None

    def test_open_applies_protector(self, udp_server):
        protect = MagicMock()
        forwarder = self._forwarder(udp_server, protect=protect)
        forwarder.open()
        try:
            protect.assert_called_once()
            assert isinstance(protect.call_args[0][0], socket.socket)
            assert forwarder.is_open is True
        finally:
            forwarder.close()

    def test_open_raises_when_protect_fails(self, udp_server):
        forwarder = self._forwarder(udp_server, protect=MagicMock(side_effect=OSError("EPERM")))
        with pytest.raises(OSError):
            forwarder.open()
        assert forwarder.is_open is False

    def test_close_is_idempotent(self, udp_server):
        forwarder = self._forwarder(udp_server)
        forwarder.open()
        forwarder.close()
        forwarder.close()
        assert forwarder.is_open is False

    def test_upstream_read_at_send_time(self, udp_server):
        """A changed upstream applies to the next forwarded query."""
        settings = DnsSettings()
        forwarder = UpstreamForwarder(settings, port=udp_server.getsockname()[1])
        forwarder.open()
        settings.set_upstream("127.0.0.1")
        thread = _reply_once(udp_server, lambda data: data)
        try:
            assert forwarder.forward(b"ping") == b"ping"
        finally:
            forwarder.close()
            thread.join(timeout=2)


class TestProtectors:
    """Tests for socket protectors."""

    def test_bind_to_device_sets_sockopt(self):
        sock = MagicMock()
        bind_to_device("wlan0")(sock)
        sock.setsockopt.assert_called_once_with(
            socket.SOL_SOCKET, socket.SO_BINDTODEVICE, b"wlan0\x00"
        )

    def test_uplink_protector_explicit_interface(self):
        sock = MagicMock()
        with patch("app.core.sinkhole.upstream.detect_interfaces") as mock_detect:
            uplink_protector("eth1")(sock)
        mock_detect.assert_not_called()
        sock.setsockopt.assert_called_once_with(
            socket.SOL_SOCKET, socket.SO_BINDTODEVICE, b"eth1\x00"
        )

    def test_uplink_protector_auto(self):
        sock = MagicMock()
        wifi = NetworkInterface("wlan0", InterfaceType.WIFI, "192.168.1.5", True, True)
        with patch("app.core.sinkhole.upstream.detect_interfaces", return_value=[wifi]):
            uplink_protector("auto")(sock)
        sock.setsockopt.assert_called_once_with(
            socket.SOL_SOCKET, socket.SO_BINDTODEVICE, b"wlan0\x00"
        )

    def test_uplink_protector_auto_without_uplink(self):
        sock = MagicMock()
        with patch("app.core.sinkhole.upstream.detect_interfaces", return_value=[]):
            uplink_protector("auto")(sock)
        sock.setsockopt.assert_not_called()
