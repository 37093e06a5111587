"""Dispatcher sequentiel du moteur de premier plan.

Story 2.2: Dispatcher mono-thread
- Evenements de focus et verifications differees executes strictement
  en sequence sur un seul thread
- Verifications differees = taches planifiees (package cible + echeance)
- Pas d'annulation: chaque tache revalide son contexte a l'execution
- run_pending() deterministe pour les tests (horloge injectee)

Lessons Learned Epic 1/2/3:
- Use Python 3.10+ type hints (X | None, not Optional[X])
- Use module-level logger, NOT current_app.logger
- Thread naming convention: dispatcher-foreground
"""

from __future__ import annotations

import heapq
import itertools
import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from app.services.policy_store import current_time_ms
from app.services.thread_manager import ThreadManager, get_thread_manager

logger = logging.getLogger(__name__)

DISPATCHER_THREAD_NAME = "dispatcher-foreground"
IDLE_WAIT_SECONDS = 0.5


@dataclass(order=True)
class ScheduledTask:
    """Tache planifiee sur le dispatcher.

    Attributes:
        due_ms: Echeance (None = immediate)
        seq: Ordre de soumission (departage les echeances egales)
        callback: Fonction executee
        args: Arguments positionnels
        label: Libelle pour les logs
    """

    due_ms: int | None
    seq: int
    callback: Callable[..., Any] = field(compare=False)
    args: tuple = field(default=(), compare=False)
    label: str = field(default="", compare=False)


class EventDispatcher:
    """File d'evenements + tas de taches differees, consommes par un thread."""

    def __init__(
        self,
        clock: Callable[[], int] = current_time_ms,
        thread_manager: ThreadManager | None = None,
    ) -> None:
        self._clock = clock
        self._thread_manager = thread_manager
        self._inbox: queue.SimpleQueue[ScheduledTask | None] = queue.SimpleQueue()
        self._timers: list[ScheduledTask] = []
        self._seq = itertools.count()
        self._running = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def clock(self) -> Callable[[], int]:
        return self._clock

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    @property
    def pending_tasks(self) -> int:
        """Tasks not yet executed (queued or waiting for their due time)."""
        return len(self._timers) + self._inbox.qsize()

    def post(self, callback: Callable[..., Any], *args: Any, label: str = "") -> None:
        """Soumet une tache immediate (thread-safe)."""
        self._inbox.put(ScheduledTask(None, next(self._seq), callback, args, label))

    def post_delayed(
        self,
        delay_ms: int,
        callback: Callable[..., Any],
        *args: Any,
        label: str = "",
    ) -> ScheduledTask:
        """Planifie une tache a maintenant + delay_ms (thread-safe)."""
        task = ScheduledTask(self._clock() + delay_ms, next(self._seq), callback, args, label)
        self._inbox.put(task)
        return task

    def run_pending(self) -> int:
        """Execute tout ce qui est pret a l'instant courant.

        Returns:
            Nombre de taches executees
        """
        executed = 0
        while True:
            self._drain_inbox()
            now = self._clock()
            if not self._timers or self._timers[0].due_ms > now:
                return executed
            self._execute(heapq.heappop(self._timers))
            executed += 1

    def start(self) -> None:
        """Demarre le thread du dispatcher."""
        if self._running.is_set():
            return
        self._running.set()
        self._thread = threading.Thread(
            target=self._loop,
            name=DISPATCHER_THREAD_NAME,
            daemon=True,
        )
        tm = self._thread_manager or get_thread_manager()
        tm.register_thread(DISPATCHER_THREAD_NAME, self._thread)
        self._thread.start()
        logger.info("Foreground dispatcher started")

    def stop(self, timeout: float = 2.0) -> None:
        """Arrete le thread (idempotent)."""
        if not self._running.is_set():
            return
        self._running.clear()
        self._inbox.put(None)
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            tm = self._thread_manager or get_thread_manager()
            tm.unregister_thread(self._thread.name)
            self._thread = None
        logger.info("Foreground dispatcher stopped")

    def _loop(self) -> None:
        while self._running.is_set():
            wait = self._seconds_until_next_timer()
            try:
                item = self._inbox.get(timeout=wait)
            except queue.Empty:
                item = None
            if item is not None:
                self._accept(item)
            self.run_pending()

    def _seconds_until_next_timer(self) -> float:
        if not self._timers:
            return IDLE_WAIT_SECONDS
        remaining = self._timers[0].due_ms - self._clock()
        return min(max(remaining, 0) / 1000.0, IDLE_WAIT_SECONDS)

    def _drain_inbox(self) -> None:
        while True:
            try:
                item = self._inbox.get_nowait()
            except queue.Empty:
                return
            if item is not None:
                self._accept(item)

    def _accept(self, item: ScheduledTask) -> None:
        # Immediate tasks are due "now"; seq keeps submission order on ties
        if item.due_ms is None:
            item = ScheduledTask(self._clock(), item.seq, item.callback, item.args, item.label)
        heapq.heappush(self._timers, item)

    def _execute(self, task: ScheduledTask) -> None:
        try:
            task.callback(*task.args)
        except Exception as e:
            logger.error(f"Dispatcher task failed (task={task.label or task.callback!r}, error={e})")
