# Cross-cutting services package

from .thread_manager import (
    ThreadManager,
    get_thread_manager,
    reset_thread_manager,
)
from .policy_store import (
    PolicyStore,
    get_policy_store,
    reset_policy_store,
)
from .dns_settings import (
    DnsSettings,
    get_dns_settings,
    reset_dns_settings,
)
from .notifier import BlockedDomainNotifier
from .policy_watcher import PolicyFileWatcher

__all__ = [
    # Thread manager
    "ThreadManager",
    "get_thread_manager",
    "reset_thread_manager",
    # Policy store (Story 1.3)
    "PolicyStore",
    "get_policy_store",
    "reset_policy_store",
    "PolicyFileWatcher",
    # DNS settings (Story 3.2)
    "DnsSettings",
    "get_dns_settings",
    "reset_dns_settings",
    "BlockedDomainNotifier",
]
