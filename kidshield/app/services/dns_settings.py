"""Runtime DNS settings read by the sinkhole packet loop.

Holds the DNS blacklist and the upstream resolver address. Both are
swapped as whole values (copy-on-write frozenset / str) so the packet
loop reads them without locking; writers serialize on a lock.
"""

from __future__ import annotations

import ipaddress
import logging
import threading
from collections.abc import Iterable

from app.core.classification.domain_classifier import normalize_domain

logger = logging.getLogger(__name__)

DEFAULT_UPSTREAM_DNS = "8.8.8.8"

DEFAULT_BLACKLIST: tuple[str, ...] = (
    "bet365.com",
    "betano.com",
    "sportingbet.com",
    "betfair.com",
    "pixbet.com",
    "estrela.bet",
    "esportesdasorte.com",
    "bet7k.com",
    "blaze.com",
    "kto.com",
    "7games.bet",
    "vaidebet.com",
    "novibet.com",
    "superbet.com",
    "parimatch.com",
    "galera.bet",
    "f12.bet",
    "betmotion.com",
    "bodog.com",
    "1xbet.com",
)

# Used when an update would leave the blacklist empty
FALLBACK_BLACKLIST: tuple[str, ...] = (
    "bet365.com",
    "betano.com",
    "sportingbet.com",
    "betfair.com",
)


def _normalize_all(domains: Iterable[str]) -> frozenset[str]:
    return frozenset(
        d for d in (normalize_domain(v) for v in domains if isinstance(v, str)) if d
    )


class DnsSettings:
    """DNS blacklist and upstream resolver, swappable at runtime."""

    def __init__(
        self,
        blacklist: Iterable[str] | None = None,
        upstream: str = DEFAULT_UPSTREAM_DNS,
    ) -> None:
        self._lock = threading.Lock()
        initial = _normalize_all(DEFAULT_BLACKLIST if blacklist is None else blacklist)
        self._blacklist: frozenset[str] = initial or frozenset(FALLBACK_BLACKLIST)
        self._upstream = self._validate_upstream(upstream)

    @property
    def blacklist(self) -> frozenset[str]:
        return self._blacklist

    @property
    def upstream(self) -> str:
        return self._upstream

    def update_blacklist(self, domains: Iterable[str]) -> frozenset[str]:
        """Replace the whole blacklist.

        An update that normalizes to nothing falls back to the built-in
        gambling blacklist instead of disabling DNS blocking.
        """
        new_list = _normalize_all(domains)
        if not new_list:
            logger.warning("Empty DNS blacklist update, using fallback list")
            new_list = frozenset(FALLBACK_BLACKLIST)
        with self._lock:
            self._blacklist = new_list
        logger.info(f"DNS blacklist updated (count={len(new_list)})")
        return new_list

    def add_to_blacklist(self, domain: str) -> bool:
        normalized = normalize_domain(domain)
        if not normalized:
            return False
        with self._lock:
            if normalized in self._blacklist:
                return False
            self._blacklist = self._blacklist | {normalized}
        logger.info(f"DNS blacklist entry added (domain={normalized})")
        return True

    def remove_from_blacklist(self, domain: str) -> bool:
        normalized = normalize_domain(domain)
        with self._lock:
            if normalized not in self._blacklist:
                return False
            self._blacklist = self._blacklist - {normalized}
        logger.info(f"DNS blacklist entry removed (domain={normalized})")
        return True

    def set_upstream(self, address: str | None) -> bool:
        """Change the upstream resolver.

        Blank or None is ignored (returns False). Raises ValueError for a
        value that is not an IPv4 address.
        """
        if address is None or not address.strip():
            return False
        validated = self._validate_upstream(address)
        with self._lock:
            self._upstream = validated
        logger.info(f"Upstream DNS updated (address={validated})")
        return True

    def to_dict(self) -> dict:
        return {
            "upstream": self._upstream,
            "blacklist": sorted(self._blacklist),
            "blacklist_count": len(self._blacklist),
        }

    @staticmethod
    def _validate_upstream(address: str) -> str:
        address = address.strip()
        # Raises ValueError for anything but a dotted-quad IPv4 address
        ipaddress.IPv4Address(address)
        return address


# Global singleton instance
_dns_settings: DnsSettings | None = None


def get_dns_settings() -> DnsSettings:
    """Get the global DnsSettings instance.

    Creates the instance on first call.
    """
    global _dns_settings

    if _dns_settings is None:
        _dns_settings = DnsSettings()

    return _dns_settings


def reset_dns_settings() -> None:
    """Reset the global DnsSettings instance (for testing)."""
    global _dns_settings
    _dns_settings = None
