"""Unit tests for interface_detector module."""

import socket
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from app.core.sinkhole.interface_detector import (
    InterfaceType,
    NetworkInterface,
    _get_interface_type,
    _is_excluded_interface,
    detect_interfaces,
    get_uplink_interface,
)


def _addr(family, address):
    return SimpleNamespace(family=family, address=address)


def _iface(name, type_, ip="192.168.1.10", connected=True):
    return NetworkInterface(name, type_, ip, connected, connected)


class TestInterfaceType:
    """Tests for name-based type detection."""

    @pytest.mark.parametrize("name,expected", [
        ("eth0", InterfaceType.ETHERNET),
        ("enp3s0", InterfaceType.ETHERNET),
        ("wlan0", InterfaceType.WIFI),
        ("wlp2s0", InterfaceType.WIFI),
        ("rmnet_data0", InterfaceType.CELLULAR),
        ("tun0", InterfaceType.TUN),
        ("kidshield0", InterfaceType.TUN),
        ("foo0", InterfaceType.UNKNOWN),
    ])
    def test_get_interface_type(self, name, expected):
        assert _get_interface_type(name) is expected

    def test_excluded_interfaces(self):
        assert _is_excluded_interface("lo") is True
        assert _is_excluded_interface("docker0") is True
        assert _is_excluded_interface("veth1234") is True
        assert _is_excluded_interface("br-abc") is True
        assert _is_excluded_interface("eth0") is False


class TestDetectInterfaces:
    """Tests for detect_interfaces with psutil patched."""

    def test_detects_with_ipv4(self):
        addrs = {
            "lo": [_addr(socket.AF_INET, "127.0.0.1")],
            "eth0": [_addr(socket.AF_INET6, "fe80::1"), _addr(socket.AF_INET, "192.168.1.10")],
            "wlan0": [],
        }
        stats = {
            "eth0": SimpleNamespace(isup=True),
            "wlan0": SimpleNamespace(isup=True),
        }
        with patch("app.core.sinkhole.interface_detector.psutil.net_if_addrs", return_value=addrs), \
                patch("app.core.sinkhole.interface_detector.psutil.net_if_stats", return_value=stats):
            interfaces = detect_interfaces()

        by_name = {i.name: i for i in interfaces}
        assert set(by_name) == {"eth0", "wlan0"}
        assert by_name["eth0"].ip_address == "192.168.1.10"
        assert by_name["eth0"].is_connected is True
        assert by_name["wlan0"].ip_address is None
        assert by_name["wlan0"].is_connected is False

    def test_psutil_error_returns_empty(self):
        with patch(
            "app.core.sinkhole.interface_detector.psutil.net_if_addrs",
            side_effect=OSError("no netlink"),
        ):
            assert detect_interfaces() == []

    def test_to_dict(self):
        data = _iface("eth0", InterfaceType.ETHERNET).to_dict()
        assert data["type"] == "ethernet"
        assert data["is_connected"] is True


class TestUplinkSelection:
    """Tests for get_uplink_interface."""

    def test_prefers_ethernet_over_wifi(self):
        wifi = _iface("wlan0", InterfaceType.WIFI)
        eth = _iface("eth0", InterfaceType.ETHERNET)
        assert get_uplink_interface([wifi, eth]) is eth

    def test_never_selects_tun(self):
        tun = _iface("kidshield0", InterfaceType.TUN, ip="10.0.0.2")
        cell = _iface("rmnet0", InterfaceType.CELLULAR)
        assert get_uplink_interface([tun, cell]) is cell

    def test_skips_disconnected(self):
        eth = _iface("eth0", InterfaceType.ETHERNET, ip=None, connected=False)
        wifi = _iface("wlan0", InterfaceType.WIFI)
        assert get_uplink_interface([eth, wifi]) is wifi

    def test_unknown_type_fallback(self):
        other = _iface("usb0", InterfaceType.UNKNOWN)
        assert get_uplink_interface([other]) is other

    def test_none_available(self):
        assert get_uplink_interface([]) is None
