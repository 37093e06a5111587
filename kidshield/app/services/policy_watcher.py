"""Hot-reload du fichier de politique.

Surveille le repertoire du fichier JSON du Policy Store avec watchdog et
recharge le store lorsque le fichier change (modification par un outil
externe, restauration de sauvegarde...).

Usage:
    watcher = PolicyFileWatcher(store)
    watcher.start()
    # ... application runs ...
    watcher.stop()
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from watchdog.observers import Observer

from app.services.policy_store import PolicyStore

logger = logging.getLogger(__name__)


class PolicyFileWatcher:
    """File watcher for automatic policy reload on file changes."""

    def __init__(self, store: PolicyStore, debounce_seconds: float = 1.0) -> None:
        """Initialize the file watcher.

        Args:
            store: Policy store backed by a JSON file
            debounce_seconds: Delay before reload to debounce rapid changes
        """
        self._store = store
        self._debounce_seconds = debounce_seconds
        self._observer: Observer | None = None
        self._running = False
        logger.debug("PolicyFileWatcher initialized")

    def start(self) -> bool:
        """Start watching the policy file directory.

        Returns:
            True if watcher started successfully, False otherwise
        """
        path = self._store.filepath
        if path is None:
            logger.warning("Policy store is in memory, hot-reload disabled")
            return False

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            handler = _PolicyChangeHandler(self._store, path, self._debounce_seconds)
            self._observer = Observer()
            self._observer.schedule(handler, str(path.parent), recursive=False)
            self._observer.start()
            self._running = True
            logger.info(f"Policy hot-reload watcher started (path={path})")
            return True
        except OSError as e:
            logger.error(f"Failed to start policy watcher (error={e})")
            self._observer = None
            return False

    def stop(self) -> None:
        """Stop watching for file changes."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None
            self._running = False
            logger.info("Policy hot-reload watcher stopped")

    @property
    def is_running(self) -> bool:
        """Check if the watcher is currently running."""
        return self._running


class _PolicyChangeHandler:
    """Internal handler for policy file change events.

    Uses trailing-edge debounce: waits for changes to stop before reloading.
    """

    def __init__(self, store: PolicyStore, path: Path, debounce_seconds: float) -> None:
        self._store = store
        self._filename = path.name
        self._debounce_seconds = debounce_seconds
        self._pending_timer: threading.Timer | None = None
        self._timer_lock = threading.Lock()

    def dispatch(self, event) -> None:
        """Handle file system events.

        Args:
            event: Watchdog file system event
        """
        event_type = getattr(event, "event_type", None)
        if event_type not in ("modified", "created", "moved"):
            return

        # Atomic saves land as a move onto the policy file
        target = getattr(event, "dest_path", None) if event_type == "moved" else None
        src_path = str(target or getattr(event, "src_path", ""))
        if Path(src_path).name != self._filename:
            return

        self._schedule_reload()

    def _schedule_reload(self) -> None:
        with self._timer_lock:
            if self._pending_timer is not None:
                self._pending_timer.cancel()
                self._pending_timer = None

            self._pending_timer = threading.Timer(self._debounce_seconds, self._do_reload)
            self._pending_timer.daemon = True
            self._pending_timer.start()

    def _do_reload(self) -> None:
        with self._timer_lock:
            self._pending_timer = None

        logger.info(f"Policy file changed, reloading (file={self._filename})")
        try:
            policy = self._store.reload()
            logger.info(
                f"Policy hot-reloaded (blocked_apps={len(policy.blocked_apps)}, "
                f"blocked_domains={len(policy.blocked_domains)}, "
                f"keywords={len(policy.blocked_keywords)})"
            )
        except Exception as e:
            logger.error(f"Hot-reload failed (error={e})")
