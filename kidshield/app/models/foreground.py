"""Foreground enforcement data models for KIDSHIELD.

Story 2.1: Moteur de premier plan
- FocusEvent (evenement "package P au premier plan")
- EnforcementAction (go home / bring to front)
- ForegroundState et HostProfile
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class FocusEventKind(Enum):
    """Nature de l'evenement recu de l'hote."""

    FOCUS_GAINED = "focus_gained"
    CONTENT_CHANGED = "content_changed"


class ActionType(Enum):
    """Seuls effets de bord autorises au moteur."""

    GO_HOME = "go_home"
    BRING_TO_FRONT = "bring_to_front"


class EventOutcome(Enum):
    """Resultat de l'evaluation d'un evenement (logue puis ignore)."""

    IGNORED = "ignored"
    SELF_FOCUS = "self_focus"
    DEBOUNCED = "debounced"
    KILL_SWITCH = "kill_switch"
    REST_MODE = "rest_mode"
    APP_BLOCKED = "app_blocked"
    APP_UNLOCKED = "app_unlocked"
    URL_CHECKS_SCHEDULED = "url_checks_scheduled"
    SETTINGS_CHECK_SCHEDULED = "settings_check_scheduled"
    NO_ACTION = "no_action"
    FAILED = "failed"


@dataclass(frozen=True)
class FocusEvent:
    """Evenement de focus.

    Attributes:
        package: Package qui vient de passer au premier plan
        kind: FOCUS_GAINED ou CONTENT_CHANGED
        at_ms: Horodatage (epoch ms); None = horloge du moteur
    """

    package: str
    kind: FocusEventKind = FocusEventKind.FOCUS_GAINED
    at_ms: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FocusEvent:
        """Deserialisation depuis le corps JSON de l'API. Leve ValueError."""
        package = data.get("package")
        if not isinstance(package, str) or not package.strip():
            raise ValueError("Champ 'package' requis")
        kind = FocusEventKind(data.get("kind", FocusEventKind.FOCUS_GAINED.value))
        at_ms = data.get("at_ms")
        return cls(
            package=package.strip(),
            kind=kind,
            at_ms=int(at_ms) if at_ms is not None else None,
        )


@dataclass(frozen=True)
class EnforcementAction:
    """Action emise vers l'hote."""

    action_type: ActionType
    package: str | None
    reason: str
    at_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action_type.value,
            "package": self.package,
            "reason": self.reason,
            "at_ms": self.at_ms,
        }


@dataclass
class ForegroundState:
    """Etat mute a chaque evenement (debounce + proprietaire de l'URL)."""

    last_foreground_package: str = ""
    last_block_action_at_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_foreground_package": self.last_foreground_package,
            "last_block_action_at_ms": self.last_block_action_at_ms,
        }


@dataclass(frozen=True)
class HostProfile:
    """Packages de l'hote connus du moteur.

    launcher_package et ime_package sont optionnels: lorsqu'ils sont
    absents, le moteur les resout paresseusement via ses resolvers.

    Attributes:
        controlling_package: Application de controle (toujours autorisee)
        app_label: Nom affiche de l'application de controle
        settings_package: Application des parametres systeme
        system_ui_package: Interface systeme
        alarm_packages: Applications d'alarme autorisees en mode repos
        browser_packages: Navigateurs reconnus pour le blocage d'URL
        launcher_package: Lanceur par defaut
        ime_package: Clavier par defaut
    """

    controlling_package: str
    app_label: str = "KidShield"
    settings_package: str = "com.android.settings"
    system_ui_package: str = "com.android.systemui"
    alarm_packages: frozenset[str] = field(default_factory=lambda: frozenset({
        "com.google.android.deskclock",
        "com.android.deskclock",
        "com.sec.android.app.clockpackage",
    }))
    browser_packages: frozenset[str] = frozenset()
    launcher_package: str | None = None
    ime_package: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "controlling_package": self.controlling_package,
            "app_label": self.app_label,
            "settings_package": self.settings_package,
            "system_ui_package": self.system_ui_package,
            "alarm_packages": sorted(self.alarm_packages),
            "browser_packages": sorted(self.browser_packages),
            "launcher_package": self.launcher_package,
            "ime_package": self.ime_package,
        }
