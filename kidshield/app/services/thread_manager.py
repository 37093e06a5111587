"""Worker thread registry for KIDSHIELD.

Two long-running workers exist per process: the sinkhole packet loop and
the foreground dispatcher. This registry tracks them by name and owns the
lifecycle lock that keeps a single sinkhole running.

Story 3.1: Sinkhole DNS local
- Lock released by whichever thread tears the sinkhole down (request
  thread on stop, loop thread on interface failure)
- Worker snapshot exposed through /api/status

Lessons Learned Epic 1/2/3:
- Use Python 3.10+ type hints (X | None, not Optional[X])
- Use module-level logger, NOT current_app.logger
"""

from __future__ import annotations

import logging
import threading
from typing import Any

logger = logging.getLogger(__name__)


class ThreadManager:
    """Registry of named worker threads plus the sinkhole lifecycle lock.

    Thread names in use:
    - sinkhole-loop
    - dispatcher-foreground
    """

    def __init__(self) -> None:
        # Plain Lock (not RLock): start and teardown run on different threads
        self._sinkhole_lock = threading.Lock()
        self._workers: dict[str, threading.Thread] = {}
        self._workers_lock = threading.Lock()

        logger.debug("ThreadManager created")

    # ------------------------------------------------------------------
    # Sinkhole lifecycle lock
    # ------------------------------------------------------------------

    def acquire_sinkhole_lock(self, blocking: bool = True, timeout: float = -1) -> bool:
        """Take the sinkhole lifecycle lock.

        Args:
            blocking: Wait for the lock when True
            timeout: Seconds to wait when blocking (-1 waits forever)

        Returns:
            True when the caller now owns the sinkhole lifecycle
        """
        acquired = self._sinkhole_lock.acquire(blocking=blocking, timeout=timeout)
        if not acquired:
            logger.debug("Sinkhole lifecycle busy")
        return acquired

    def release_sinkhole_lock(self) -> None:
        """Release the lifecycle lock; releasing an idle lock only warns."""
        try:
            self._sinkhole_lock.release()
        except RuntimeError:
            logger.warning("Sinkhole lock released while not held")

    def is_sinkhole_locked(self) -> bool:
        return self._sinkhole_lock.locked()

    # ------------------------------------------------------------------
    # Worker registry
    # ------------------------------------------------------------------

    def register_thread(self, name: str, thread: threading.Thread) -> None:
        """Track a worker under its name, replacing a stale entry."""
        with self._workers_lock:
            previous = self._workers.get(name)
            if previous is not None and previous is not thread and previous.is_alive():
                logger.warning(f"Worker name reused while previous still alive (name={name})")
            self._workers[name] = thread
        logger.debug(f"Worker registered (name={name})")

    def unregister_thread(self, name: str) -> threading.Thread | None:
        with self._workers_lock:
            thread = self._workers.pop(name, None)
        if thread is not None:
            logger.debug(f"Worker unregistered (name={name})")
        return thread

    def get_worker_status(self) -> list[dict[str, Any]]:
        """Registered workers for the status endpoint, sorted by name."""
        with self._workers_lock:
            workers = sorted(self._workers.items())
        return [
            {"name": name, "alive": thread.is_alive(), "daemon": thread.daemon}
            for name, thread in workers
        ]


# Global singleton instance
_thread_manager: ThreadManager | None = None


def get_thread_manager() -> ThreadManager:
    """Get the global ThreadManager instance, created on first call."""
    global _thread_manager

    if _thread_manager is None:
        _thread_manager = ThreadManager()

    return _thread_manager


def reset_thread_manager() -> None:
    """Reset the global ThreadManager instance (for testing)."""
    global _thread_manager
    _thread_manager = None
