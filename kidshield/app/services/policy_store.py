"""Policy Store: stockage cle-valeur persistant et thread-safe.

Story 1.3: Policy Store partage
- Cles du modele (blocking_enabled, blocked_packages, temp_app_unlocks...)
- Persistence JSON (ecriture atomique: fichier temporaire + replace)
- Stockage en memoire quand aucun chemin n'est fourni (tests)
- Snapshot BlockPolicy reconstruit a chaque ecriture puis echange

Lessons Learned Epic 1/2/3:
- Use Python 3.10+ type hints (X | None, not Optional[X])
- Use module-level logger, NOT current_app.logger
- Singleton pattern with get_*/reset_* functions
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from collections.abc import Callable, Iterable
from pathlib import Path
from threading import Lock
from typing import Any

from app.models.policy import (
    DOMAIN_LIST_KEYS,
    FLAG_DEFAULTS,
    KEY_ANTI_TAMPERING_ENABLED,
    KEY_BLOCKED_DOMAINS,
    KEY_BLOCKED_KEYWORDS,
    KEY_BLOCKED_PACKAGES,
    KEY_BLOCKING_ENABLED,
    KEY_FORCE_BLOCK_NOW,
    KEY_LAST_FOREGROUND_PACKAGE,
    KEY_REST_MODE_ACTIVE,
    KEY_TEMP_APP_UNLOCKS,
    KEY_URL_BLOCKING_ENABLED,
    KEY_WHITELIST_DOMAINS,
    LIST_KEYS,
    POLICY_INVALID_VALUE,
    POLICY_RELOAD_FAILED,
    POLICY_UNKNOWN_KEY,
    TEMPORARY_UNLOCK_MINUTES,
    BlockPolicy,
    PolicyError,
    TemporaryUnlock,
    normalize_domain_entry,
    normalize_keyword,
)

logger = logging.getLogger(__name__)


def current_time_ms() -> int:
    """Horloge murale en millisecondes."""
    return int(time.time() * 1000)


def _decode_list(raw: Any) -> list:
    """Decode une liste persistee (tableau JSON ou chaine JSON)."""
    if isinstance(raw, str):
        raw = json.loads(raw)
    if not isinstance(raw, list):
        raise TypeError(f"expected a JSON array, got {type(raw).__name__}")
    return raw


def _normalize_list(key: str, values: Iterable[Any]) -> list[str]:
    """Normalise et deduplique les entrees d'une liste (ordre trie)."""
    if key in DOMAIN_LIST_KEYS:
        normalize = normalize_domain_entry
    elif key == KEY_BLOCKED_KEYWORDS:
        normalize = normalize_keyword
    else:
        normalize = str.strip

    result: set[str] = set()
    for value in values:
        if not isinstance(value, str):
            continue
        normalized = normalize(value)
        if normalized:
            result.add(normalized)
    return sorted(result)


class PolicyStore:
    """Policy Store avec persistence JSON optionnelle.

    Les lecteurs (moteurs) lisent `policy`: une reference vers un snapshot
    immuable. Les ecrivains construisent un nouveau dictionnaire de valeurs
    et un nouveau snapshot sous verrou puis les publient par affectation.
    """

    def __init__(
        self,
        filepath: str | Path | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._filepath = Path(filepath) if filepath else None
        self._clock = clock or current_time_ms
        self._lock = Lock()
        self._values: dict[str, Any] = {}
        self._policy = BlockPolicy()
        self.load()

    @property
    def filepath(self) -> Path | None:
        return self._filepath

    @property
    def policy(self) -> BlockPolicy:
        """Snapshot courant (jamais modifie en place)."""
        return self._policy

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Charge les valeurs depuis le fichier JSON.

        Fichier absent ou illisible -> valeurs par defaut.
        """
        values: dict[str, Any] = {}
        if self._filepath is not None and self._filepath.exists():
            try:
                data = json.loads(self._filepath.read_text(encoding="utf-8"))
                if isinstance(data, dict):
                    values = data
                else:
                    logger.error(
                        f"Policy file is not a JSON object (path={self._filepath})"
                    )
            except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
                logger.error(f"Erreur chargement politique (error={exc})")

        with self._lock:
            self._publish(values)
        logger.info(
            f"Policy loaded (path={self._filepath}, keys={len(values)})"
        )

    def reload(self) -> BlockPolicy:
        """Recharge depuis le disque. Leve PolicyError en mode memoire."""
        if self._filepath is None:
            raise PolicyError(
                POLICY_RELOAD_FAILED,
                "Policy store is in memory, nothing to reload",
            )
        self.load()
        return self._policy

    def save(self) -> None:
        """Sauvegarde atomique vers le fichier JSON (aucun effet en memoire)."""
        if self._filepath is None:
            return
        payload = json.dumps(self._values, indent=2, ensure_ascii=False, sort_keys=True)
        self._filepath.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self._filepath.name}.", dir=str(self._filepath.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self._filepath)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    # ------------------------------------------------------------------
    # Raw key-value access
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Ecrit une cle (valeur normalisee selon son type)."""
        if key in FLAG_DEFAULTS:
            if not isinstance(value, bool):
                raise PolicyError(
                    POLICY_INVALID_VALUE,
                    f"Flag '{key}' expects a boolean",
                    {"key": key},
                )
            stored: Any = value
        elif key in LIST_KEYS:
            try:
                stored = _normalize_list(key, _decode_list(value))
            except (TypeError, ValueError) as exc:
                raise PolicyError(
                    POLICY_INVALID_VALUE,
                    f"List '{key}' expects an array of strings",
                    {"key": key, "error": str(exc)},
                ) from exc
        elif key == KEY_LAST_FOREGROUND_PACKAGE:
            stored = str(value or "")
        elif key == KEY_TEMP_APP_UNLOCKS:
            try:
                stored = [TemporaryUnlock.from_dict(e).to_dict() for e in _decode_list(value)]
            except (KeyError, TypeError, ValueError) as exc:
                raise PolicyError(
                    POLICY_INVALID_VALUE,
                    "Unlocks expect an array of {pkg, exp}",
                    {"key": key, "error": str(exc)},
                ) from exc
        else:
            raise PolicyError(POLICY_UNKNOWN_KEY, f"Unknown policy key '{key}'", {"key": key})

        self._write({key: stored})

    def set_flag(self, key: str, enabled: bool) -> None:
        if key not in FLAG_DEFAULTS:
            raise PolicyError(POLICY_UNKNOWN_KEY, f"Unknown flag '{key}'", {"key": key})
        self.set(key, bool(enabled))

    def set_list(self, key: str, values: Iterable[str]) -> frozenset[str]:
        """Remplace une liste complete; retourne le contenu normalise."""
        if key not in LIST_KEYS:
            raise PolicyError(POLICY_UNKNOWN_KEY, f"Unknown list '{key}'", {"key": key})
        self.set(key, list(values))
        return frozenset(self._values[key])

    # Typed setters used by the control surface

    def set_blocking_enabled(self, enabled: bool) -> None:
        self.set_flag(KEY_BLOCKING_ENABLED, enabled)

    def set_anti_tampering_enabled(self, enabled: bool) -> None:
        self.set_flag(KEY_ANTI_TAMPERING_ENABLED, enabled)

    def set_rest_mode_active(self, active: bool) -> None:
        self.set_flag(KEY_REST_MODE_ACTIVE, active)

    def set_kill_switch(self, active: bool) -> None:
        self.set_flag(KEY_FORCE_BLOCK_NOW, active)

    def set_url_blocking_enabled(self, enabled: bool) -> None:
        self.set_flag(KEY_URL_BLOCKING_ENABLED, enabled)

    def set_blocked_apps(self, packages: Iterable[str]) -> frozenset[str]:
        return self.set_list(KEY_BLOCKED_PACKAGES, packages)

    def set_blocked_domains(self, domains: Iterable[str]) -> frozenset[str]:
        return self.set_list(KEY_BLOCKED_DOMAINS, domains)

    def set_whitelist_domains(self, domains: Iterable[str]) -> frozenset[str]:
        return self.set_list(KEY_WHITELIST_DOMAINS, domains)

    def set_blocked_keywords(self, keywords: Iterable[str]) -> frozenset[str]:
        return self.set_list(KEY_BLOCKED_KEYWORDS, keywords)

    # ------------------------------------------------------------------
    # Foreground bookkeeping
    # ------------------------------------------------------------------

    @property
    def last_foreground_package(self) -> str:
        value = self._values.get(KEY_LAST_FOREGROUND_PACKAGE, "")
        return value if isinstance(value, str) else ""

    def set_last_foreground_package(self, package: str) -> None:
        if package == self.last_foreground_package:
            return
        self.set(KEY_LAST_FOREGROUND_PACKAGE, package)

    # ------------------------------------------------------------------
    # Temporary unlocks
    # ------------------------------------------------------------------

    def get_temporary_unlocks(self, now_ms: int | None = None) -> list[TemporaryUnlock]:
        """Deblocages actifs (les entrees expirees sont ignorees)."""
        now = self._clock() if now_ms is None else now_ms
        return [u for u in self._read_unlocks(self._values) if u.is_active(now)]

    def has_active_unlock(self, package: str, now_ms: int | None = None) -> bool:
        return any(u.package_id == package for u in self.get_temporary_unlocks(now_ms))

    def add_temporary_unlock(
        self,
        package: str,
        expires_at_ms: int,
        now_ms: int | None = None,
    ) -> bool:
        """Ajoute un deblocage; purge les expires. Package vide ignore."""
        package = (package or "").strip()
        if not package:
            return False
        now = self._clock() if now_ms is None else now_ms

        with self._lock:
            unlocks = [
                u for u in self._read_unlocks(self._values)
                if u.is_active(now) and u.package_id != package
            ]
            unlocks.append(TemporaryUnlock(package, int(expires_at_ms)))
            self._write_locked({KEY_TEMP_APP_UNLOCKS: [u.to_dict() for u in unlocks]})

        logger.info(
            f"Temporary unlock added (package={package}, expires_at_ms={expires_at_ms})"
        )
        return True

    def add_thirty_minutes(self, controlling_package: str, now_ms: int | None = None) -> bool:
        """Debloque le dernier package au premier plan pour 30 minutes.

        Retourne False si aucun package n'est connu ou s'il s'agit de
        l'application de controle.
        """
        package = self.last_foreground_package
        if not package or package == controlling_package:
            logger.info(f"Thirty-minute unlock skipped (last_foreground={package!r})")
            return False
        now = self._clock() if now_ms is None else now_ms
        return self.add_temporary_unlock(
            package, now + TEMPORARY_UNLOCK_MINUTES * 60 * 1000, now_ms=now
        )

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self, now_ms: int | None = None) -> dict[str, Any]:
        """Vue complete pour l'API."""
        data = self._policy.to_dict()
        data[KEY_LAST_FOREGROUND_PACKAGE] = self.last_foreground_package
        data[KEY_TEMP_APP_UNLOCKS] = [u.to_dict() for u in self.get_temporary_unlocks(now_ms)]
        return data

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _write(self, updates: dict[str, Any]) -> None:
        with self._lock:
            self._write_locked(updates)

    def _write_locked(self, updates: dict[str, Any]) -> None:
        values = dict(self._values)
        values.update(updates)
        self._publish(values)
        try:
            self.save()
        except OSError as exc:
            # In-memory state stays authoritative until the next successful save
            logger.error(f"Erreur sauvegarde politique (path={self._filepath}, error={exc})")

    def _publish(self, values: dict[str, Any]) -> None:
        policy = self._build_policy(values)
        self._values = values
        self._policy = policy

    def _build_policy(self, values: dict[str, Any]) -> BlockPolicy:
        return BlockPolicy(
            blocking_enabled=self._read_flag(values, KEY_BLOCKING_ENABLED),
            blocked_apps=self._read_list(values, KEY_BLOCKED_PACKAGES),
            anti_tampering_enabled=self._read_flag(values, KEY_ANTI_TAMPERING_ENABLED),
            rest_mode_active=self._read_flag(values, KEY_REST_MODE_ACTIVE),
            kill_switch_active=self._read_flag(values, KEY_FORCE_BLOCK_NOW),
            url_blocking_enabled=self._read_flag(values, KEY_URL_BLOCKING_ENABLED),
            blocked_domains=self._read_list(values, KEY_BLOCKED_DOMAINS),
            whitelist_domains=self._read_list(values, KEY_WHITELIST_DOMAINS),
            blocked_keywords=self._read_list(values, KEY_BLOCKED_KEYWORDS),
        )

    @staticmethod
    def _read_flag(values: dict[str, Any], key: str) -> bool:
        value = values.get(key, FLAG_DEFAULTS[key])
        if isinstance(value, bool):
            return value
        logger.warning(f"Invalid flag value, using default (key={key}, value={value!r})")
        return FLAG_DEFAULTS[key]

    @staticmethod
    def _read_list(values: dict[str, Any], key: str) -> frozenset[str]:
        raw = values.get(key)
        if raw is None:
            return frozenset()
        try:
            return frozenset(_normalize_list(key, _decode_list(raw)))
        except (TypeError, ValueError) as exc:
            logger.warning(f"Corrupt policy list read as empty (key={key}, error={exc})")
            return frozenset()

    @staticmethod
    def _read_unlocks(values: dict[str, Any]) -> list[TemporaryUnlock]:
        raw = values.get(KEY_TEMP_APP_UNLOCKS)
        if raw is None:
            return []
        try:
            entries = _decode_list(raw)
        except (TypeError, ValueError) as exc:
            logger.warning(f"Corrupt unlock list read as empty (error={exc})")
            return []
        unlocks = []
        for entry in entries:
            try:
                unlocks.append(TemporaryUnlock.from_dict(entry))
            except (KeyError, TypeError, ValueError):
                logger.debug(f"Invalid unlock entry skipped (entry={entry!r})")
        return unlocks


# Global singleton instance
_instance: PolicyStore | None = None


def get_policy_store(filepath: str | Path | None = None) -> PolicyStore:
    """Retourne l'instance singleton du PolicyStore."""
    global _instance
    if _instance is None:
        _instance = PolicyStore(filepath)
    return _instance


def reset_policy_store() -> None:
    """Reset le singleton (utile pour les tests)."""
    global _instance
    _instance = None
