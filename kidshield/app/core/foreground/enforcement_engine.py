"""Foreground Enforcement Engine.

Story 2.3: Moteur de blocage au premier plan
- Machine a etats: auto-focus, debounce, kill switch, mode repos,
  applications bloquees, URL navigateur, anti-desinstallation
- Deux effets de bord seulement: go home / bring to front
- Verifications differees planifiees sur le dispatcher
- Toute erreur (lecture ecran, resolution package, action) est loguee
  et traitee comme "aucune action"

Lessons Learned Epic 1/2/3:
- Use Python 3.10+ type hints (X | None, not Optional[X])
- Use module-level logger, NOT current_app.logger
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from dataclasses import replace

from app.core.classification.domain_classifier import explain
from app.core.foreground.dispatcher import EventDispatcher
from app.core.foreground.screen_content import (
    BROWSER_PACKAGES,
    ScreenNode,
    extract_domain,
    extract_url,
    gather_text,
)
from app.models.foreground import (
    ActionType,
    EnforcementAction,
    EventOutcome,
    FocusEvent,
    FocusEventKind,
    ForegroundState,
    HostProfile,
)
from app.models.policy import KEY_FORCE_BLOCK_NOW
from app.services.policy_store import PolicyStore

logger = logging.getLogger(__name__)

BLOCK_DEBOUNCE_MS = 2500
URL_CHECK_DEBOUNCE_MS = 1500
URL_CHECK_DELAYS_MS: tuple[int, ...] = (100, 500, 1000, 2000, 3000)
SETTINGS_CHECK_DELAY_MS = 150
TAMPERING_MARKER = "vpn"

ScreenProvider = Callable[[], ScreenNode | None]
PackageResolver = Callable[[], str | None]


class ActionSink(ABC):
    """Host side of the two allowed side effects."""

    @abstractmethod
    def go_home(self, reason: str) -> None:
        ...

    @abstractmethod
    def bring_to_front(self, package: str, reason: str) -> None:
        ...


class QueuedActionSink(ActionSink):
    """Records actions for the host to poll (control API)."""

    def __init__(self, clock: Callable[[], int], maxlen: int = 200) -> None:
        self._clock = clock
        self._actions: deque[EnforcementAction] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def go_home(self, reason: str) -> None:
        self._record(ActionType.GO_HOME, None, reason)

    def bring_to_front(self, package: str, reason: str) -> None:
        self._record(ActionType.BRING_TO_FRONT, package, reason)

    def drain(self) -> list[EnforcementAction]:
        with self._lock:
            actions = list(self._actions)
            self._actions.clear()
        return actions

    def peek(self) -> list[EnforcementAction]:
        with self._lock:
            return list(self._actions)

    def _record(self, action_type: ActionType, package: str | None, reason: str) -> None:
        action = EnforcementAction(action_type, package, reason, self._clock())
        with self._lock:
            self._actions.append(action)


class ForegroundEnforcementEngine:
    """Applies the block policy to focus events."""

    def __init__(
        self,
        policy_store: PolicyStore,
        host: HostProfile,
        action_sink: ActionSink,
        dispatcher: EventDispatcher,
        screen_provider: ScreenProvider,
        launcher_resolver: PackageResolver | None = None,
        ime_resolver: PackageResolver | None = None,
    ) -> None:
        self._store = policy_store
        self._host = host
        self._sink = action_sink
        self._dispatcher = dispatcher
        self._clock = dispatcher.clock
        self._screen_provider = screen_provider
        self._launcher_resolver = launcher_resolver
        self._ime_resolver = ime_resolver
        self._launcher_cache: str | None = None
        self._ime_cache: str | None = None

        self._state = ForegroundState()
        self._last_url_check_package = ""
        self._last_url_check_at_ms: int | None = None

    @property
    def state(self) -> ForegroundState:
        return self._state

    @property
    def host(self) -> HostProfile:
        return self._host

    def update_host(self, **changes) -> HostProfile:
        """Replace host profile fields; cached package resolutions are reset."""
        self._host = replace(self._host, **changes)
        self._launcher_cache = None
        self._ime_cache = None
        return self._host

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def submit(self, event: FocusEvent) -> None:
        """Queue an event on the dispatcher (thread-safe)."""
        self._dispatcher.post(self.handle_event, event, label=f"focus:{event.package}")

    def handle_event(self, event: FocusEvent) -> EventOutcome:
        """Evaluate one event on the dispatcher thread."""
        try:
            outcome = self._evaluate(event)
        except Exception as e:
            logger.error(f"Focus event failed (package={event.package}, error={e})")
            return EventOutcome.FAILED
        if outcome not in (EventOutcome.IGNORED, EventOutcome.NO_ACTION):
            logger.debug(f"Focus event evaluated (package={event.package}, outcome={outcome.value})")
        return outcome

    def _evaluate(self, event: FocusEvent) -> EventOutcome:
        package = event.package
        if not package:
            return EventOutcome.IGNORED

        now = event.at_ms if event.at_ms is not None else self._clock()
        policy = self._store.policy

        if event.kind is FocusEventKind.CONTENT_CHANGED:
            if policy.url_blocking_enabled and self._is_browser(package):
                self._record_foreground(package)
                if self._schedule_url_checks(package, now):
                    return EventOutcome.URL_CHECKS_SCHEDULED
            return EventOutcome.IGNORED

        self._record_foreground(package)

        # 1. Self-focus
        if package == self._host.controlling_package:
            if policy.kill_switch_active:
                self._store.set_flag(KEY_FORCE_BLOCK_NOW, False)
                logger.info("Kill switch cleared by controlling app focus")
            return EventOutcome.SELF_FOCUS

        # 2. Debounce
        last = self._state.last_block_action_at_ms
        if last is not None and now - last < BLOCK_DEBOUNCE_MS:
            return EventOutcome.DEBOUNCED

        # 3. Kill switch
        if policy.kill_switch_active:
            logger.info(f"Kill switch active, blocking (package={package})")
            self._block(now, package, "kill_switch", bring_to_front=True)
            return EventOutcome.KILL_SWITCH

        # 4. Rest mode
        if policy.rest_mode_active and not self._is_allowed_in_rest_mode(package):
            logger.info(f"Rest mode active, blocking (package={package})")
            self._block(now, package, "rest_mode")
            return EventOutcome.REST_MODE

        # 5. Blocked apps
        if policy.blocking_enabled and package in policy.blocked_apps:
            if self._store.has_active_unlock(package, now):
                logger.info(f"Blocked app temporarily unlocked (package={package})")
                return EventOutcome.APP_UNLOCKED
            logger.info(f"Blocked app in foreground (package={package})")
            self._block(now, package, "blocked_app")
            return EventOutcome.APP_BLOCKED

        outcome = EventOutcome.NO_ACTION

        # 6. Browser URL checks
        if policy.url_blocking_enabled and self._is_browser(package):
            if self._schedule_url_checks(package, now):
                outcome = EventOutcome.URL_CHECKS_SCHEDULED

        # 7. Anti-tampering
        if policy.anti_tampering_enabled and package == self._host.settings_package:
            self._dispatcher.post_delayed(
                SETTINGS_CHECK_DELAY_MS,
                self.check_settings_screen,
                package,
                label=f"settings-check:{package}",
            )
            outcome = EventOutcome.SETTINGS_CHECK_SCHEDULED

        return outcome

    # ------------------------------------------------------------------
    # Delayed checks
    # ------------------------------------------------------------------

    def check_url(self, package: str) -> bool:
        """Delayed browser check. Returns True when the page was blocked."""
        try:
            if self._store.last_foreground_package != package:
                logger.debug(f"Stale URL check skipped (package={package})")
                return False
            root = self._screen_provider()
            if root is None:
                return False
            url = extract_url(root)
            domain = extract_domain(url)
            if not domain:
                return False

            result = explain(domain, self._store.policy, observed=url)
            if not result.blocked:
                return False

            logger.info(
                f"Blocked URL in browser (package={package}, domain={domain}, "
                f"reason={result.reason}, match={result.matched})"
            )
            self._block(self._clock(), package, "blocked_url", bring_to_front=True)
            return True
        except Exception as e:
            logger.warning(f"URL check failed (package={package}, error={e})")
            return False

    def check_settings_screen(self, package: str) -> bool:
        """Delayed anti-tampering check on the settings app."""
        try:
            if self._store.last_foreground_package != package:
                return False
            root = self._screen_provider()
            if root is None:
                return False
            text = gather_text(root).lower()
            label = self._host.app_label.lower()
            if (label and label in text) or TAMPERING_MARKER in text:
                logger.info(f"Tampering screen detected (package={package})")
                # Not a block action: the debounce window stays untouched
                self._sink.go_home("anti_tampering")
                return True
            return False
        except Exception as e:
            logger.warning(f"Settings check failed (package={package}, error={e})")
            return False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record_foreground(self, package: str) -> None:
        self._state.last_foreground_package = package
        self._store.set_last_foreground_package(package)

    def _schedule_url_checks(self, package: str, now: int) -> bool:
        last = self._last_url_check_at_ms
        if (
            package == self._last_url_check_package
            and last is not None
            and now - last <= URL_CHECK_DEBOUNCE_MS
        ):
            return False
        self._last_url_check_package = package
        self._last_url_check_at_ms = now
        for delay in URL_CHECK_DELAYS_MS:
            self._dispatcher.post_delayed(delay, self.check_url, package, label=f"url-check:{package}")
        return True

    def _block(self, now: int, package: str, reason: str, bring_to_front: bool = False) -> None:
        self._state.last_block_action_at_ms = now
        try:
            self._sink.go_home(reason)
            if bring_to_front:
                self._sink.bring_to_front(self._host.controlling_package, reason)
        except Exception as e:
            logger.error(f"Action dispatch failed (package={package}, reason={reason}, error={e})")

    def _is_browser(self, package: str) -> bool:
        return package in BROWSER_PACKAGES or package in self._host.browser_packages

    def _is_allowed_in_rest_mode(self, package: str) -> bool:
        host = self._host
        if package in (host.controlling_package, host.system_ui_package):
            return True
        if package in host.alarm_packages:
            return True
        return package in (self._launcher_package(), self._ime_package())

    def _launcher_package(self) -> str | None:
        if self._host.launcher_package:
            return self._host.launcher_package
        if self._launcher_cache is None and self._launcher_resolver is not None:
            try:
                self._launcher_cache = self._launcher_resolver()
            except Exception as e:
                logger.warning(f"Launcher resolution failed (error={e})")
        return self._launcher_cache

    def _ime_package(self) -> str | None:
        if self._host.ime_package:
            return self._host.ime_package
        if self._ime_cache is None and self._ime_resolver is not None:
            try:
                self._ime_cache = self._ime_resolver()
            except Exception as e:
                logger.warning(f"Keyboard resolution failed (error={e})")
        return self._ime_cache
