from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from conftest import make_open_project, make_user, read

from campus_escrow.core.errors import (
    ConflictError,
    ConflictExceededError,
    InvalidStateError,
    NotFoundError,
    StoreTimeoutError,
)


def _rename(user_id, name):
    def _op(tx):
        tx.update("users", user_id, {"display_name": name})

    return _op


def test_update_bumps_version_and_stamps(store):
    user = make_user(store, "student", name="before")
    store.run(_rename(user.id, "after"), op="test.rename")

    stored = read(store, "users", user.id)
    assert stored.display_name == "after"
    assert stored.version == user.version + 1
    assert stored.updated_at is not None


def test_read_set_is_validated_at_commit(store):
    watched = make_user(store, "student")
    other = make_user(store, "student")

    tx = store.begin()
    try:
        tx.get("users", watched.id)
        store.run(_rename(watched.id, "changed elsewhere"), op="test.concurrent")
        tx.update("users", other.id, {"display_name": "depends on watched"})
        with pytest.raises(ConflictError):
            tx.commit()
    finally:
        tx.close()

    assert read(store, "users", other.id).display_name != "depends on watched"


def test_stale_write_is_a_conflict(store):
    user = make_user(store, "student")

    tx = store.begin()
    try:
        tx.get("users", user.id)
        store.run(_rename(user.id, "first"), op="test.concurrent")
        tx.update("users", user.id, {"display_name": "second"})
        with pytest.raises(ConflictError):
            tx.commit()
    finally:
        tx.close()

    assert read(store, "users", user.id).display_name == "first"


def test_run_retries_conflicts_then_succeeds(store):
    calls = []

    def _op(tx):
        calls.append(1)
        if len(calls) < 3:
            raise ConflictError("busy")
        return "done"

    assert store.run(_op, op="test.retry") == "done"
    assert len(calls) == 3


def test_run_gives_up_after_max_retries(store):
    calls = []

    def _op(tx):
        calls.append(1)
        raise StoreTimeoutError("lost the connection")

    with pytest.raises(ConflictExceededError):
        store.run(_op, op="test.exhaust")
    assert len(calls) == store.max_retries + 1


def test_domain_errors_are_not_retried(store):
    calls = []

    def _op(tx):
        calls.append(1)
        tx.require("projects", "missing", label="Project")

    with pytest.raises(NotFoundError, match="Project not found."):
        store.run(_op, op="test.missing")
    assert len(calls) == 1


def test_server_timestamp_is_monotonic_per_document(store):
    ahead = datetime.now(timezone.utc) + timedelta(hours=1)
    tx = store.begin()
    try:
        assert tx.server_timestamp(SimpleNamespace(updated_at=ahead)) == ahead + timedelta(microseconds=1)
        # naive values are read as UTC
        naive = ahead.replace(tzinfo=None)
        assert tx.server_timestamp(SimpleNamespace(updated_at=naive)) == ahead + timedelta(microseconds=1)
    finally:
        tx.close()


def test_document_loaded_by_query_stays_pinned(store):
    user = make_user(store, "student", name="solo")

    tx = store.begin()
    try:
        tx.query("users", display_name="solo")
        store.run(_rename(user.id, "first"), op="test.concurrent")
        tx.update("users", user.id, {"display_name": "second"})
        with pytest.raises(ConflictError):
            tx.commit()
    finally:
        tx.close()

    stored = read(store, "users", user.id)
    assert stored.display_name == "first"
    assert stored.version == user.version + 1


def test_read_snapshot_refuses_writes(store):
    user = make_user(store, "student")
    with store.read() as tx:
        with pytest.raises(InvalidStateError):
            tx.update("users", user.id, {"display_name": "nope"})
        with pytest.raises(InvalidStateError):
            tx.commit()


def test_increment_and_delete(store, client_user):
    project = make_open_project(store, client_user.id)
    assert store.run(lambda tx: tx.increment("projects", project.id, "bid_count", 2), op="test.inc") == 2
    assert read(store, "projects", project.id).bid_count == 2

    doomed = make_user(store, "student")
    store.run(lambda tx: tx.delete("users", doomed.id), op="test.delete")
    assert read(store, "users", doomed.id) is None


def test_unknown_collection(store):
    with store.read() as tx:
        with pytest.raises(ValueError):
            tx.get("invoices", "x")
