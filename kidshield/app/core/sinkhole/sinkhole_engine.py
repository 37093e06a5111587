"""DNS Sinkhole Engine.

Story 3.1: Sinkhole DNS local
- Lifecycle IDLE -> ESTABLISHING -> RUNNING -> STOPPING -> IDLE
- One dedicated worker thread: read / classify / respond
- Blocked names answered with 0.0.0.0, allowed names forwarded upstream
- DoT (853), TCP and non-DNS UDP dropped

Lessons Learned Epic 1/2/3:
- Use Python 3.10+ type hints (X | None, not Optional[X])
- Use module-level logger, NOT current_app.logger
- Exclusive lifecycle lock via ThreadManager (one sinkhole per process)
"""

from __future__ import annotations

import dataclasses
import logging
import subprocess
import threading
from collections import Counter
from collections.abc import Callable
from typing import Any

from app.core.classification.domain_classifier import explain
from app.core.sinkhole.dns_codec import (
    DNS_PORT,
    DOT_PORT,
    build_sinkhole_response,
    parse_query,
)
from app.core.sinkhole.packet_codec import PROTO_UDP, build_udp_reply, parse_ipv4
from app.core.sinkhole.tun_interface import VirtualInterface
from app.core.sinkhole.upstream import UpstreamForwarder
from app.models.policy import BlockPolicy
from app.models.sinkhole import (
    DNS_NO_QUESTION,
    SINKHOLE_ALREADY_RUNNING,
    SINKHOLE_INTERFACE_FAILED,
    SINKHOLE_SOCKET_FAILED,
    PacketError,
    PacketOutcome,
    PacketResult,
    SinkholeError,
    SinkholeStatus,
)
from app.services.dns_settings import DnsSettings
from app.services.notifier import BlockedDomainNotifier
from app.services.policy_store import PolicyStore
from app.services.thread_manager import ThreadManager, get_thread_manager

logger = logging.getLogger(__name__)

LOOP_THREAD_NAME = "sinkhole-loop"
READ_BUFFER_SIZE = 32767
STOP_JOIN_TIMEOUT = 5.0

InterfaceFactory = Callable[[], VirtualInterface]


class DnsSinkholeEngine:
    """Owns the virtual interface and runs the packet loop."""

    def __init__(
        self,
        settings: DnsSettings,
        policy_store: PolicyStore,
        interface_factory: InterfaceFactory,
        forwarder: UpstreamForwarder,
        notifier: BlockedDomainNotifier | None = None,
        thread_manager: ThreadManager | None = None,
    ) -> None:
        self._settings = settings
        self._policy_store = policy_store
        self._interface_factory = interface_factory
        self._forwarder = forwarder
        self._notifier = notifier
        self._thread_manager = thread_manager or get_thread_manager()

        self._status = SinkholeStatus.IDLE
        self._state_lock = threading.Lock()
        self._running = threading.Event()
        self._interface: VirtualInterface | None = None
        self._thread: threading.Thread | None = None
        self._counters: Counter[PacketOutcome] = Counter()
        self._merged_cache: tuple[BlockPolicy, frozenset[str], BlockPolicy] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def status(self) -> SinkholeStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._status is SinkholeStatus.RUNNING

    def start(self) -> None:
        """Establish the interface and start the packet loop.

        Raises:
            SinkholeError: already running, or resource acquisition failed
                (the engine is back to IDLE in that case)
        """
        tm = self._thread_manager
        if not tm.acquire_sinkhole_lock(blocking=False):
            logger.warning("Sinkhole start rejected, lifecycle busy")
            raise SinkholeError(
                code=SINKHOLE_ALREADY_RUNNING,
                message="Le sinkhole DNS est deja actif",
                details={"status": self._status.value},
            )

        self._status = SinkholeStatus.ESTABLISHING
        logger.info("Establishing DNS sinkhole")

        try:
            interface = self._interface_factory()
        except (OSError, subprocess.CalledProcessError) as e:
            self._abort_start()
            logger.error(f"Sinkhole interface failed (error={e})")
            raise SinkholeError(
                code=SINKHOLE_INTERFACE_FAILED,
                message=f"Failed to establish virtual interface: {e}",
                details={"error": str(e)},
            ) from e

        try:
            self._forwarder.open()
        except OSError as e:
            interface.close()
            self._abort_start()
            logger.error(f"Sinkhole upstream socket failed (error={e})")
            raise SinkholeError(
                code=SINKHOLE_SOCKET_FAILED,
                message=f"Failed to open upstream socket: {e}",
                details={"error": str(e)},
            ) from e

        self._interface = interface
        self._running.set()
        self._thread = threading.Thread(
            target=self._loop,
            args=(interface,),
            name=LOOP_THREAD_NAME,
            daemon=True,
        )
        tm.register_thread(LOOP_THREAD_NAME, self._thread)
        self._status = SinkholeStatus.RUNNING
        self._thread.start()

        logger.info(
            f"DNS sinkhole running (interface={interface.name}, "
            f"upstream={self._settings.upstream})"
        )

    def stop(self) -> bool:
        """Stop the packet loop and release resources.

        Safe when idle and idempotent. Returns True if a running engine
        was stopped.
        """
        with self._state_lock:
            if self._status is not SinkholeStatus.RUNNING:
                return False
            self._status = SinkholeStatus.STOPPING

        logger.info("Stopping DNS sinkhole")
        self._running.clear()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=STOP_JOIN_TIMEOUT)
            if thread.is_alive():
                logger.warning("Sinkhole loop did not exit in time")

        self._teardown()
        logger.info("DNS sinkhole stopped")
        return True

    def _abort_start(self) -> None:
        self._status = SinkholeStatus.IDLE
        self._thread_manager.release_sinkhole_lock()

    def _teardown(self) -> None:
        with self._state_lock:
            interface, self._interface = self._interface, None
            thread, self._thread = self._thread, None
            self._status = SinkholeStatus.IDLE

        if interface is not None:
            try:
                interface.close()
            except OSError as e:
                logger.warning(f"Error closing interface (error={e})")
        self._forwarder.close()
        if thread is not None:
            self._thread_manager.unregister_thread(thread.name)
        self._thread_manager.release_sinkhole_lock()

    # ------------------------------------------------------------------
    # Packet loop
    # ------------------------------------------------------------------

    def _loop(self, interface: VirtualInterface) -> None:
        while self._running.is_set():
            try:
                data = interface.read(READ_BUFFER_SIZE)
            except OSError as e:
                if not self._running.is_set():
                    break
                logger.error(f"Interface read failed, stopping sinkhole (error={e})")
                with self._state_lock:
                    if self._status is not SinkholeStatus.RUNNING:
                        break
                    self._status = SinkholeStatus.STOPPING
                self._running.clear()
                self._teardown()
                break

            if not data:
                continue

            result = self.process_packet(data)
            if result.reply is None:
                continue
            try:
                interface.write(result.reply)
            except OSError as e:
                logger.warning(f"Interface write failed (domain={result.domain}, error={e})")

    def process_packet(self, data: bytes) -> PacketResult:
        """Process one raw IPv4 datagram read from the interface."""
        result = self._process(data)
        self._counters[result.outcome] += 1
        return result

    def _process(self, data: bytes) -> PacketResult:
        try:
            packet = parse_ipv4(data)
        except PacketError as e:
            logger.debug(f"Packet dropped (code={e.code})")
            return PacketResult(PacketOutcome.DROPPED_MALFORMED)

        if packet.destination_port == DOT_PORT:
            return PacketResult(PacketOutcome.DROPPED_DOT)
        if packet.protocol != PROTO_UDP or packet.destination_port != DNS_PORT:
            return PacketResult(PacketOutcome.DROPPED_UNSUPPORTED)

        try:
            query, question = parse_query(packet.payload)
        except PacketError as e:
            logger.debug(f"DNS query dropped (code={e.code})")
            if e.code == DNS_NO_QUESTION:
                return PacketResult(PacketOutcome.DROPPED_NO_QUESTION)
            return PacketResult(PacketOutcome.DROPPED_MALFORMED)

        domain = question.domain
        classification = explain(domain, self._effective_policy())

        if classification.blocked:
            logger.info(
                f"DNS query blocked (domain={domain}, reason={classification.reason}, "
                f"match={classification.matched})"
            )
            response = build_sinkhole_response(query, question)
            if self._notifier is not None:
                self._notifier.emit(domain)
            return PacketResult(
                PacketOutcome.BLOCKED,
                reply=build_udp_reply(packet, response),
                domain=domain,
            )

        reply = self._forwarder.forward(packet.payload)
        if reply is None:
            return PacketResult(PacketOutcome.NO_UPSTREAM_REPLY, domain=domain)
        logger.debug(f"DNS query forwarded (domain={domain})")
        return PacketResult(
            PacketOutcome.FORWARDED,
            reply=build_udp_reply(packet, reply),
            domain=domain,
        )

    def _effective_policy(self) -> BlockPolicy:
        """Store policy with the DNS blacklist merged into blocked_domains."""
        policy = self._policy_store.policy
        blacklist = self._settings.blacklist
        cached = self._merged_cache
        if cached is not None and cached[0] is policy and cached[1] is blacklist:
            return cached[2]
        merged = dataclasses.replace(
            policy, blocked_domains=policy.blocked_domains | blacklist
        )
        self._merged_cache = (policy, blacklist, merged)
        return merged

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def counters(self) -> dict[str, int]:
        return {outcome.value: self._counters.get(outcome, 0) for outcome in PacketOutcome}

    def get_status(self) -> dict[str, Any]:
        interface = self._interface
        return {
            "status": self._status.value,
            "interface": interface.name if interface is not None else None,
            "upstream": self._settings.upstream,
            "blacklist_count": len(self._settings.blacklist),
            "counters": self.counters,
        }
