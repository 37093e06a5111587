"""DNS sinkhole module for KIDSHIELD.

Provides the virtual interface packet loop answering blocked DNS names
locally and forwarding the rest to the upstream resolver.
"""

from app.core.sinkhole.sinkhole_engine import DnsSinkholeEngine
from app.core.sinkhole.tun_interface import (
    RESOLVER_ROUTES,
    TunInterface,
    VirtualInterface,
)
from app.core.sinkhole.upstream import UpstreamForwarder, bind_to_device

__all__ = [
    "DnsSinkholeEngine",
    "RESOLVER_ROUTES",
    "TunInterface",
    "VirtualInterface",
    "UpstreamForwarder",
    "bind_to_device",
]
