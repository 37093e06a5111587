"""Policy data models for KIDSHIELD.

Definit les dataclasses et enums partages par le moteur de premier plan
et le sinkhole DNS.

Story 1.2: Modele de politique partage
- BlockPolicy snapshot immuable (frozensets), remplace en bloc
- TemporaryUnlock avec serialisation {pkg, exp}
- Verdict du classificateur de domaines
- Cles du Policy Store

Lessons Learned Epic 1/2/3:
- Use Python 3.10+ type hints (X | None, not Optional[X])
- Use list/dict directly (not typing.List/Dict)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Verdict(Enum):
    """Decision du classificateur."""

    ALLOW = "allow"
    BLOCK = "block"


# Policy store keys
KEY_BLOCKING_ENABLED = "blocking_enabled"
KEY_BLOCKED_PACKAGES = "blocked_packages"
KEY_ANTI_TAMPERING_ENABLED = "anti_tampering_enabled"
KEY_REST_MODE_ACTIVE = "rest_mode_active"
KEY_FORCE_BLOCK_NOW = "force_block_now"
KEY_LAST_FOREGROUND_PACKAGE = "last_foreground_package"
KEY_URL_BLOCKING_ENABLED = "url_blocking_enabled"
KEY_BLOCKED_DOMAINS = "blocked_domains"
KEY_WHITELIST_DOMAINS = "whitelist_domains"
KEY_BLOCKED_KEYWORDS = "blocked_keywords"
KEY_TEMP_APP_UNLOCKS = "temp_app_unlocks"

FLAG_DEFAULTS: dict[str, bool] = {
    KEY_BLOCKING_ENABLED: False,
    KEY_ANTI_TAMPERING_ENABLED: True,
    KEY_REST_MODE_ACTIVE: False,
    KEY_FORCE_BLOCK_NOW: False,
    KEY_URL_BLOCKING_ENABLED: False,
}

# Lists stored as JSON arrays of strings
LIST_KEYS = (
    KEY_BLOCKED_PACKAGES,
    KEY_BLOCKED_DOMAINS,
    KEY_WHITELIST_DOMAINS,
    KEY_BLOCKED_KEYWORDS,
)
DOMAIN_LIST_KEYS = (KEY_BLOCKED_DOMAINS, KEY_WHITELIST_DOMAINS)

TEMPORARY_UNLOCK_MINUTES = 30


def normalize_domain_entry(value: str) -> str:
    """Lower-case, trim, strip the trailing root dot."""
    return value.strip().lower().rstrip(".")


def normalize_keyword(value: str) -> str:
    """Lower-case and remove every whitespace character."""
    return "".join(value.split()).lower()


@dataclass(frozen=True)
class TemporaryUnlock:
    """Deblocage temporaire d'une application.

    Attributes:
        package_id: Identifiant du package debloque
        expires_at_ms: Expiration (epoch ms); absent si <= maintenant
    """

    package_id: str
    expires_at_ms: int

    def is_active(self, now_ms: int) -> bool:
        return self.expires_at_ms > now_ms

    def to_dict(self) -> dict[str, Any]:
        """Serialisation au format persiste {pkg, exp}."""
        return {"pkg": self.package_id, "exp": self.expires_at_ms}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TemporaryUnlock:
        """Deserialisation depuis {pkg, exp}. Leve KeyError/ValueError/TypeError."""
        return cls(package_id=str(data["pkg"]), expires_at_ms=int(data["exp"]))


@dataclass(frozen=True)
class BlockPolicy:
    """Snapshot immuable de la politique lue par les deux moteurs.

    Un nouveau snapshot est construit a chaque ecriture et remplace
    l'ancien en une seule affectation; il n'est jamais modifie en place.
    """

    blocking_enabled: bool = False
    blocked_apps: frozenset[str] = frozenset()
    anti_tampering_enabled: bool = True
    rest_mode_active: bool = False
    kill_switch_active: bool = False
    url_blocking_enabled: bool = False
    blocked_domains: frozenset[str] = frozenset()
    whitelist_domains: frozenset[str] = frozenset()
    blocked_keywords: frozenset[str] = frozenset()

    def to_dict(self) -> dict[str, Any]:
        """Serialisation JSON avec les cles du Policy Store."""
        return {
            KEY_BLOCKING_ENABLED: self.blocking_enabled,
            KEY_BLOCKED_PACKAGES: sorted(self.blocked_apps),
            KEY_ANTI_TAMPERING_ENABLED: self.anti_tampering_enabled,
            KEY_REST_MODE_ACTIVE: self.rest_mode_active,
            KEY_FORCE_BLOCK_NOW: self.kill_switch_active,
            KEY_URL_BLOCKING_ENABLED: self.url_blocking_enabled,
            KEY_BLOCKED_DOMAINS: sorted(self.blocked_domains),
            KEY_WHITELIST_DOMAINS: sorted(self.whitelist_domains),
            KEY_BLOCKED_KEYWORDS: sorted(self.blocked_keywords),
        }


class PolicyError(Exception):
    """Exception for policy store errors.

    Attributes:
        code: Error code (e.g., 'POLICY_UNKNOWN_KEY')
        message: Human-readable error message
        details: Additional error details
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON error response."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


# Error code constants
POLICY_UNKNOWN_KEY = "POLICY_UNKNOWN_KEY"
POLICY_INVALID_VALUE = "POLICY_INVALID_VALUE"
POLICY_RELOAD_FAILED = "POLICY_RELOAD_FAILED"
POLICY_NOT_AUTHORIZED = "POLICY_NOT_AUTHORIZED"
