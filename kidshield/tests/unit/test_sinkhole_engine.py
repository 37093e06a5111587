"""Unit tests for the DNS sinkhole engine (Story 3.1)."""

import queue
import time
from unittest.mock import MagicMock

import pytest
from scapy.all import DNS, DNSQR, IP, TCP, UDP

from app.core.sinkhole.sinkhole_engine import DnsSinkholeEngine
from app.core.sinkhole.tun_interface import VirtualInterface
from app.core.sinkhole.upstream import UpstreamForwarder
from app.models.sinkhole import (
    SINKHOLE_ALREADY_RUNNING,
    SINKHOLE_INTERFACE_FAILED,
    SINKHOLE_SOCKET_FAILED,
    PacketOutcome,
    SinkholeError,
    SinkholeStatus,
)
from app.services.dns_settings import DnsSettings
from app.services.notifier import BlockedDomainNotifier
from app.services.policy_store import PolicyStore
from app.services.thread_manager import ThreadManager


class FakeInterface(VirtualInterface):
    """In-memory virtual interface fed by the test."""

    def __init__(self, name="kidshield-test"):
        self._name = name
        self.inbound = queue.Queue()
        self.written = queue.Queue()
        self.closed = False
        self.fail_reads = False

    @property
    def name(self):
        return self._name

    def read(self, size):
        if self.closed or self.fail_reads:
            raise OSError("interface gone")
        try:
            return self.inbound.get(timeout=0.05)
        except queue.Empty:
            return b""

    def write(self, datagram):
        self.written.put(datagram)
        return len(datagram)

    def close(self):
        self.closed = True


def dns_query(qname, qtype="A", dport=53):
    return bytes(
        IP(src="10.0.0.2", dst="8.8.8.8")
        / UDP(sport=41000, dport=dport)
        / DNS(id=7, rd=1, qd=DNSQR(qname=qname, qtype=qtype))
    )


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def store():
    return PolicyStore()


@pytest.fixture
def settings():
    return DnsSettings(blacklist=["blocked.example"])


@pytest.fixture
def forwarder():
    mock = MagicMock(spec=UpstreamForwarder)
    mock.forward.return_value = b"upstream-reply"
    return mock


@pytest.fixture
def interface():
    return FakeInterface()


@pytest.fixture
def notifier():
    return BlockedDomainNotifier()


@pytest.fixture
def engine(settings, store, interface, forwarder, notifier):
    engine = DnsSinkholeEngine(
        settings,
        store,
        lambda: interface,
        forwarder,
        notifier=notifier,
        thread_manager=ThreadManager(),
    )
    yield engine
    engine.stop()


class TestProcessPacket:
    """Per-packet classification and response building."""

    def test_blacklisted_domain_sinkholed(self, engine, forwarder, notifier):
        result = engine.process_packet(dns_query("www.blocked.example"))

        assert result.outcome is PacketOutcome.BLOCKED
        assert result.domain == "www.blocked.example"
        forwarder.forward.assert_not_called()

        reply = IP(result.reply)
        assert reply.src == "8.8.8.8"
        assert reply.dst == "10.0.0.2"
        assert reply[UDP].sport == 53
        assert reply[UDP].dport == 41000
        dns = reply[DNS]
        assert dns.id == 7
        assert dns.qr == 1
        assert dns.ancount == 1

        assert [e.domain for e in notifier.recent()] == ["www.blocked.example"]

    def test_policy_store_lists_used(self, engine, store):
        store.set_blocked_domains(["roblox.com"])
        result = engine.process_packet(dns_query("api.roblox.com"))
        assert result.outcome is PacketOutcome.BLOCKED

    def test_store_whitelist_overrides_dns_blacklist(self, engine, store, forwarder):
        store.set_whitelist_domains(["blocked.example"])
        result = engine.process_packet(dns_query("blocked.example"))
        assert result.outcome is PacketOutcome.FORWARDED
        forwarder.forward.assert_called_once()

    def test_default_keyword_blocked(self, engine):
        result = engine.process_packet(dns_query("www.pornhub.com"))
        assert result.outcome is PacketOutcome.BLOCKED

    def test_aaaa_blocked_question_only(self, engine):
        result = engine.process_packet(dns_query("blocked.example", qtype="AAAA"))
        assert result.outcome is PacketOutcome.BLOCKED
        assert IP(result.reply)[DNS].ancount == 0

    def test_allowed_domain_forwarded_verbatim(self, engine, forwarder):
        query = dns_query("example.com")

        result = engine.process_packet(query)

        assert result.outcome is PacketOutcome.FORWARDED
        forwarder.forward.assert_called_once_with(query[28:])
        assert result.reply[28:] == b"upstream-reply"

    def test_upstream_timeout_no_reply(self, engine, forwarder):
        forwarder.forward.return_value = None
        result = engine.process_packet(dns_query("example.com"))
        assert result.outcome is PacketOutcome.NO_UPSTREAM_REPLY
        assert result.reply is None

    def test_dot_dropped(self, engine):
        tcp = bytes(IP(src="10.0.0.2", dst="1.1.1.1") / TCP(sport=5000, dport=853))
        assert engine.process_packet(tcp).outcome is PacketOutcome.DROPPED_DOT
        udp = dns_query("example.com", dport=853)
        assert engine.process_packet(udp).outcome is PacketOutcome.DROPPED_DOT

    def test_tcp_dns_dropped(self, engine):
        tcp = bytes(IP(src="10.0.0.2", dst="8.8.8.8") / TCP(sport=5000, dport=53))
        assert engine.process_packet(tcp).outcome is PacketOutcome.DROPPED_UNSUPPORTED

    def test_non_dns_udp_dropped(self, engine):
        result = engine.process_packet(dns_query("example.com", dport=123))
        assert result.outcome is PacketOutcome.DROPPED_UNSUPPORTED

    def test_malformed_dropped(self, engine):
        result = engine.process_packet(b"\x45\x00\x00")
        assert result.outcome is PacketOutcome.DROPPED_MALFORMED
        assert result.reply is None

    def test_query_without_question_dropped(self, engine):
        data = bytes(
            IP(src="10.0.0.2", dst="8.8.8.8") / UDP(sport=41000, dport=53) / DNS(id=1, qdcount=0)
        )
        result = engine.process_packet(data)
        assert result.outcome is PacketOutcome.DROPPED_NO_QUESTION

    def test_empty_question_name_not_forwarded(self, engine, forwarder):
        result = engine.process_packet(dns_query("."))
        assert result.outcome is PacketOutcome.DROPPED_MALFORMED
        assert result.reply is None
        forwarder.forward.assert_not_called()

    def test_counters(self, engine):
        engine.process_packet(dns_query("blocked.example"))
        engine.process_packet(dns_query("example.com"))
        engine.process_packet(b"junk")

        counters = engine.counters
        assert counters["blocked"] == 1
        assert counters["forwarded"] == 1
        assert counters["dropped_malformed"] == 1
        assert counters["dropped_dot"] == 0

    def test_dns_blacklist_update_applies(self, engine, settings):
        settings.update_blacklist(["newly.example"])
        assert engine.process_packet(dns_query("newly.example")).outcome is PacketOutcome.BLOCKED
        assert engine.process_packet(dns_query("blocked.example")).outcome is PacketOutcome.FORWARDED


class TestLifecycle:
    """Start / stop and the packet loop."""

    def test_initial_status(self, engine):
        assert engine.status is SinkholeStatus.IDLE
        assert engine.get_status()["interface"] is None

    def test_start_runs_loop(self, engine, interface, forwarder):
        engine.start()

        assert engine.is_running is True
        forwarder.open.assert_called_once()
        assert engine.get_status()["interface"] == "kidshield-test"

        interface.inbound.put(dns_query("blocked.example"))
        reply = interface.written.get(timeout=2)
        assert IP(reply)[DNS].qr == 1

    def test_stop_releases_resources(self, engine, interface, forwarder):
        engine.start()

        assert engine.stop() is True

        assert engine.status is SinkholeStatus.IDLE
        assert interface.closed is True
        forwarder.close.assert_called_once()

    def test_stop_idempotent(self, engine):
        assert engine.stop() is False
        engine.start()
        assert engine.stop() is True
        assert engine.stop() is False

    def test_start_twice_rejected(self, engine):
        engine.start()
        with pytest.raises(SinkholeError) as exc_info:
            engine.start()
        assert exc_info.value.code == SINKHOLE_ALREADY_RUNNING

    def test_restart_after_stop(self, settings, store, forwarder):
        """Each start opens a new interface; the closed one is never reused."""
        opened = []

        def factory():
            opened.append(FakeInterface())
            return opened[-1]

        engine = DnsSinkholeEngine(settings, store, factory, forwarder, thread_manager=ThreadManager())
        try:
            engine.start()
            engine.stop()
            engine.start()

            assert engine.is_running is True
            assert len(opened) == 2
            assert opened[0].closed is True
            assert opened[1].closed is False

            opened[1].inbound.put(dns_query("blocked.example"))
            reply = opened[1].written.get(timeout=2)
            assert IP(reply)[DNS].qr == 1
        finally:
            engine.stop()

    def test_interface_failure_returns_to_idle(self, settings, store, forwarder):
        def factory():
            raise OSError("no /dev/net/tun")

        engine = DnsSinkholeEngine(settings, store, factory, forwarder, thread_manager=ThreadManager())

        with pytest.raises(SinkholeError) as exc_info:
            engine.start()

        assert exc_info.value.code == SINKHOLE_INTERFACE_FAILED
        assert engine.status is SinkholeStatus.IDLE
        forwarder.open.assert_not_called()

    def test_socket_failure_closes_interface(self, settings, store, forwarder, interface):
        forwarder.open.side_effect = OSError("EPERM")
        tm = ThreadManager()
        engine = DnsSinkholeEngine(settings, store, lambda: interface, forwarder, thread_manager=tm)

        with pytest.raises(SinkholeError) as exc_info:
            engine.start()

        assert exc_info.value.code == SINKHOLE_SOCKET_FAILED
        assert interface.closed is True
        assert engine.status is SinkholeStatus.IDLE
        assert tm.is_sinkhole_locked() is False

    def test_read_error_tears_down(self, engine, interface, forwarder):
        engine.start()
        interface.fail_reads = True

        assert _wait_for(lambda: engine.status is SinkholeStatus.IDLE)
        assert interface.closed is True
        forwarder.close.assert_called_once()

    def test_write_error_does_not_stop_loop(self, engine, interface):
        calls = []

        def failing_write(datagram):
            calls.append(datagram)
            raise OSError("EIO")

        interface.write = failing_write
        engine.start()
        interface.inbound.put(dns_query("blocked.example"))
        interface.inbound.put(dns_query("blocked.example"))

        assert _wait_for(lambda: len(calls) == 2)
        assert engine.is_running is True
