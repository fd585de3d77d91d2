# =============================================================================
# tests/test_session_store.py - Persisted Session Store
# =============================================================================

import json
from datetime import timedelta

from appfun.models.session import SessionRecord
from tests.conftest import EPOCH


def _record(**overrides) -> SessionRecord:
    data = dict(
        id="uid-alice",
        auth_user_id="uid-alice",
        email="alice@example.com",
        username="alice",
        login_time=EPOCH,
        expires_at=EPOCH + timedelta(hours=24),
    )
    data.update(overrides)
    return SessionRecord(**data)


class TestRoundTrip:
    def test_load_returns_none_when_empty(self, store):
        assert store.load() is None

    def test_save_then_load(self, store):
        record = _record(full_name="Alice Liddell", remember_me=True)
        assert store.save(record) is True

        loaded = store.load()
        assert loaded == record

    def test_new_instance_restores_record(self, store, make_store):
        """A restart (fresh store, same storage and salt) sees the session."""
        store.save(_record())
        assert make_store().load().email == "alice@example.com"

    def test_value_is_encrypted_at_rest(self, store, storage):
        store.save(_record())
        raw = storage.get(store.storage_key)
        assert "alice@example.com" not in raw
        envelope = json.loads(raw)
        assert envelope["v"] == 1
        assert set(envelope) == {"v", "nonce", "tag", "ciphertext"}

    def test_uses_configured_key(self, make_store, storage):
        store = make_store(storage_key="custom_key")
        store.save(_record())
        assert storage.get("custom_key") is not None
        assert storage.get("supabase_auth_data") is None


class TestExpiry:
    def test_expired_record_is_cleared(self, store, storage, clock):
        store.save(_record())
        clock.advance(hours=24)

        assert store.load() is None
        assert storage.get(store.storage_key) is None

    def test_record_valid_until_expiry(self, store, clock):
        store.save(_record())
        clock.advance(hours=23, minutes=59)
        assert store.load() is not None


class TestCorruption:
    def test_garbage_is_cleared(self, store, storage):
        storage.set(store.storage_key, "not json at all")
        assert store.load() is None
        assert storage.get(store.storage_key) is None

    def test_non_object_json_is_cleared(self, store, storage):
        storage.set(store.storage_key, "[1, 2, 3]")
        assert store.load() is None
        assert storage.get(store.storage_key) is None

    def test_tampered_ciphertext_is_cleared(self, store, storage):
        store.save(_record())
        envelope = json.loads(storage.get(store.storage_key))
        envelope["tag"] = envelope["nonce"] + "AAAA"
        storage.set(store.storage_key, json.dumps(envelope))

        assert store.load() is None
        assert storage.get(store.storage_key) is None

    def test_foreign_salt_cannot_decrypt(self, store, make_store, tmp_path):
        store.save(_record())
        other = make_store(salt_path=tmp_path / "other-salt.bin")
        assert other.load() is None

    def test_unknown_version_is_cleared(self, store, storage):
        store.save(_record())
        envelope = json.loads(storage.get(store.storage_key))
        envelope["v"] = 99
        storage.set(store.storage_key, json.dumps(envelope))
        assert store.load() is None

    def test_missing_email_is_cleared(self, store, storage):
        store.save(_record(email=""))
        assert store.load() is None
        assert storage.get(store.storage_key) is None


class TestClear:
    def test_clear_removes_record(self, store, storage):
        store.save(_record())
        store.clear()
        assert storage.get(store.storage_key) is None
        assert store.load() is None

    def test_clear_when_empty_is_harmless(self, store):
        store.clear()
        assert store.load() is None


class TestSalt:
    def test_salt_file_created_once(self, store, salt_path):
        store.save(_record())
        first = salt_path.read_bytes()
        assert len(first) == 32

        store.save(_record())
        assert salt_path.read_bytes() == first

    def test_storage_failure_reports_false(self, store, db):
        db.close()
        assert store.save(_record()) is False
        assert store.load() is None
