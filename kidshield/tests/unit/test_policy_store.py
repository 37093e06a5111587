"""Unit tests for policy_store service (Story 1.3)."""

import json
from unittest.mock import patch

import pytest

from app.models.policy import (
    KEY_BLOCKED_DOMAINS,
    KEY_BLOCKED_KEYWORDS,
    KEY_BLOCKED_PACKAGES,
    KEY_BLOCKING_ENABLED,
    KEY_FORCE_BLOCK_NOW,
    KEY_TEMP_APP_UNLOCKS,
    POLICY_INVALID_VALUE,
    POLICY_RELOAD_FAILED,
    POLICY_UNKNOWN_KEY,
    BlockPolicy,
    PolicyError,
    TemporaryUnlock,
)
from app.services.policy_store import (
    PolicyStore,
    get_policy_store,
    reset_policy_store,
)

NOW = 1_700_000_000_000


@pytest.fixture
def store():
    """In-memory store with a fixed clock."""
    return PolicyStore(clock=lambda: NOW)


@pytest.fixture
def policy_file(tmp_path):
    return tmp_path / "policy" / "policy.json"


class TestDefaults:
    """Tests for an empty store."""

    def test_default_policy(self, store):
        policy = store.policy
        assert policy == BlockPolicy()
        assert policy.anti_tampering_enabled is True
        assert policy.blocking_enabled is False

    def test_memory_mode_has_no_filepath(self, store):
        assert store.filepath is None

    def test_to_dict_uses_store_keys(self, store):
        data = store.to_dict()
        assert data[KEY_FORCE_BLOCK_NOW] is False
        assert data[KEY_BLOCKED_PACKAGES] == []
        assert data["last_foreground_package"] == ""
        assert data[KEY_TEMP_APP_UNLOCKS] == []


class TestSetters:
    """Tests for flag and list writes."""

    def test_typed_flag_setters(self, store):
        store.set_blocking_enabled(True)
        store.set_rest_mode_active(True)
        store.set_kill_switch(True)
        store.set_url_blocking_enabled(True)
        store.set_anti_tampering_enabled(False)

        policy = store.policy
        assert policy.blocking_enabled is True
        assert policy.rest_mode_active is True
        assert policy.kill_switch_active is True
        assert policy.url_blocking_enabled is True
        assert policy.anti_tampering_enabled is False

    def test_snapshot_replaced_not_mutated(self, store):
        before = store.policy
        store.set_blocking_enabled(True)
        assert before.blocking_enabled is False
        assert store.policy is not before

    def test_flag_requires_bool(self, store):
        with pytest.raises(PolicyError) as exc_info:
            store.set(KEY_BLOCKING_ENABLED, "yes")
        assert exc_info.value.code == POLICY_INVALID_VALUE

    def test_unknown_key(self, store):
        with pytest.raises(PolicyError) as exc_info:
            store.set("no_such_key", True)
        assert exc_info.value.code == POLICY_UNKNOWN_KEY

    def test_unknown_flag(self, store):
        with pytest.raises(PolicyError):
            store.set_flag(KEY_BLOCKED_PACKAGES, True)

    def test_domain_list_normalized(self, store):
        result = store.set_blocked_domains([" Example.COM. ", "example.com", "", "  "])
        assert result == frozenset({"example.com"})
        assert store.policy.blocked_domains == frozenset({"example.com"})

    def test_keywords_strip_whitespace(self, store):
        store.set_blocked_keywords(["Free Fire", "roblox "])
        assert store.policy.blocked_keywords == frozenset({"freefire", "roblox"})

    def test_list_accepts_json_string(self, store):
        store.set(KEY_BLOCKED_PACKAGES, '["com.game", "com.other"]')
        assert store.policy.blocked_apps == frozenset({"com.game", "com.other"})

    def test_list_rejects_non_array(self, store):
        with pytest.raises(PolicyError) as exc_info:
            store.set(KEY_BLOCKED_DOMAINS, '{"a": 1}')
        assert exc_info.value.code == POLICY_INVALID_VALUE

    def test_last_foreground_package(self, store):
        store.set_last_foreground_package("com.game")
        assert store.last_foreground_package == "com.game"


class TestTemporaryUnlocks:
    """Tests for temporary unlocks."""

    def test_add_and_query(self, store):
        assert store.add_temporary_unlock("com.game", NOW + 1000) is True
        assert store.has_active_unlock("com.game") is True
        assert store.get_temporary_unlocks() == [TemporaryUnlock("com.game", NOW + 1000)]

    def test_expiry_boundary(self, store):
        """An unlock is active while exp > now, gone at exp == now."""
        store.add_temporary_unlock("com.game", NOW + 1000)
        assert store.has_active_unlock("com.game", now_ms=NOW + 999) is True
        assert store.has_active_unlock("com.game", now_ms=NOW + 1000) is False

    def test_blank_package_ignored(self, store):
        assert store.add_temporary_unlock("  ", NOW + 1000) is False
        assert store.get_temporary_unlocks() == []

    def test_expired_entries_pruned_on_add(self, store):
        store.add_temporary_unlock("com.old", NOW + 10, now_ms=NOW)
        store.add_temporary_unlock("com.new", NOW + 5000, now_ms=NOW + 100)
        raw = store.get(KEY_TEMP_APP_UNLOCKS)
        assert [e["pkg"] for e in raw] == ["com.new"]

    def test_same_package_replaced(self, store):
        store.add_temporary_unlock("com.game", NOW + 1000)
        store.add_temporary_unlock("com.game", NOW + 9000)
        assert store.get_temporary_unlocks() == [TemporaryUnlock("com.game", NOW + 9000)]

    def test_add_thirty_minutes(self, store):
        store.set_last_foreground_package("com.game")
        assert store.add_thirty_minutes("com.kidshield.app") is True
        assert store.get_temporary_unlocks() == [
            TemporaryUnlock("com.game", NOW + 30 * 60 * 1000)
        ]

    def test_add_thirty_minutes_skips_controlling_app(self, store):
        store.set_last_foreground_package("com.kidshield.app")
        assert store.add_thirty_minutes("com.kidshield.app") is False
        assert store.get_temporary_unlocks() == []

    def test_add_thirty_minutes_skips_empty(self, store):
        assert store.add_thirty_minutes("com.kidshield.app") is False


class TestPersistence:
    """Tests for JSON file persistence."""

    def test_save_and_reload(self, policy_file):
        store = PolicyStore(policy_file)
        store.set_blocking_enabled(True)
        store.set_blocked_apps(["com.game"])

        assert policy_file.exists()
        data = json.loads(policy_file.read_text(encoding="utf-8"))
        assert data[KEY_BLOCKING_ENABLED] is True
        assert data[KEY_BLOCKED_PACKAGES] == ["com.game"]

        other = PolicyStore(policy_file)
        assert other.policy.blocking_enabled is True
        assert other.policy.blocked_apps == frozenset({"com.game"})

    def test_reload_picks_up_external_change(self, policy_file):
        store = PolicyStore(policy_file)
        policy_file.parent.mkdir(parents=True, exist_ok=True)
        policy_file.write_text(json.dumps({KEY_FORCE_BLOCK_NOW: True}), encoding="utf-8")

        policy = store.reload()

        assert policy.kill_switch_active is True

    def test_reload_in_memory_raises(self, store):
        with pytest.raises(PolicyError) as exc_info:
            store.reload()
        assert exc_info.value.code == POLICY_RELOAD_FAILED

    def test_invalid_json_file_loads_defaults(self, policy_file):
        policy_file.parent.mkdir(parents=True)
        policy_file.write_text("{not json", encoding="utf-8")
        store = PolicyStore(policy_file)
        assert store.policy == BlockPolicy()

    def test_corrupt_list_reads_as_empty(self, policy_file):
        """A corrupt persisted list reads as empty, other fields intact."""
        policy_file.parent.mkdir(parents=True)
        policy_file.write_text(json.dumps({
            KEY_BLOCKING_ENABLED: True,
            KEY_BLOCKED_DOMAINS: "[broken",
            KEY_BLOCKED_KEYWORDS: ["roblox"],
        }), encoding="utf-8")

        store = PolicyStore(policy_file)

        assert store.policy.blocked_domains == frozenset()
        assert store.policy.blocking_enabled is True
        assert store.policy.blocked_keywords == frozenset({"roblox"})

    def test_corrupt_flag_reads_default(self, policy_file):
        policy_file.parent.mkdir(parents=True)
        policy_file.write_text(json.dumps({"anti_tampering_enabled": "maybe"}), encoding="utf-8")
        store = PolicyStore(policy_file)
        assert store.policy.anti_tampering_enabled is True

    def test_save_failure_keeps_memory_state(self, policy_file):
        store = PolicyStore(policy_file)
        with patch.object(PolicyStore, "save", side_effect=OSError("disk full")):
            store.set_blocking_enabled(True)
        assert store.policy.blocking_enabled is True

    def test_no_temp_files_left(self, policy_file):
        store = PolicyStore(policy_file)
        store.set_blocking_enabled(True)
        store.set_blocking_enabled(False)
        assert [p.name for p in policy_file.parent.iterdir()] == ["policy.json"]


class TestSingleton:
    """Tests for get_policy_store / reset_policy_store."""

    def setup_method(self):
        reset_policy_store()

    def teardown_method(self):
        reset_policy_store()

    def test_returns_same_instance(self):
        assert get_policy_store() is get_policy_store()

    def test_reset_creates_new_instance(self):
        first = get_policy_store()
        reset_policy_store()
        assert get_policy_store() is not first
