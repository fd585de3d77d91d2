# =============================================================================
# tests/test_local_storage.py - Local key-value store and schema
# =============================================================================

import pytest

from appfun.schema import CURRENT_SCHEMA_VERSION, initialize_schema
from appfun.services.local_storage import LocalStorage


def test_schema_is_idempotent(db, logger):
    initialize_schema(db.sqlite, logger)
    initialize_schema(db.sqlite, logger)
    row = db.sqlite.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
    assert row[0] == CURRENT_SCHEMA_VERSION


def test_get_set_remove(storage):
    assert storage.get("k") is None
    assert storage.set("k", "v1") is True
    assert storage.set("k", "v2") is True
    assert storage.get("k") == "v2"
    assert storage.remove("k") is True
    assert storage.get("k") is None


def test_remove_missing_key_is_success(storage):
    assert storage.remove("never-set") is True


def test_shared_between_instances(db, logger):
    LocalStorage(db=db, logger=logger).set("under_review", "true")
    assert LocalStorage(db=db, logger=logger).get("under_review") == "true"


def test_failures_are_reported_not_raised(storage, db):
    db.close()
    assert storage.get("k") is None
    assert storage.set("k", "v") is False
    assert storage.remove("k") is False


def test_offline_database_has_no_supabase(db):
    assert db.is_online is False
    with pytest.raises(RuntimeError):
        db.supabase
