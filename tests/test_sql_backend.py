import logging
import threading
import time
from datetime import timedelta

import pytest
from sqlalchemy import create_engine, select, text, update

from dblock.errors import BackendError, ConfigError
from dblock.sync import SQLLockBackend
from dblock.sync.sql_backend import utcnow
from dblock.utils.token import random_token


def _row(backend, key):
    t = backend.table
    with backend.engine.connect() as conn:
        return conn.execute(select(t).where(t.c.lock_name == key)).first()


def test_create_schema_is_idempotent(sql_backend):
    sql_backend.create_schema()
    assert _row(sql_backend, "nothing") is None


def test_insert_then_contention(sql_backend):
    tok_a, tok_b = random_token(), random_token()

    # 1. First obtain inserts the row
    assert sql_backend.obtain("k1", tok_a, "meta", 1000) is True
    row = _row(sql_backend, "k1")
    assert row.token_value == tok_a
    assert row.meta_value == "meta"
    assert row.locked_by == sql_backend.locked_by
    assert row.locked_pid == sql_backend.locked_pid

    # 2. Insert hits the primary key, the guarded update matches nothing
    assert sql_backend.obtain("k1", tok_b, "other", 1000) is False
    assert _row(sql_backend, "k1").token_value == tok_a


def test_same_token_does_not_reclaim_live_row(sql_backend):
    token = random_token()
    assert sql_backend.obtain("k2", token, "", 1000) is True
    assert sql_backend.obtain("k2", token, "", 1000) is False


def test_expired_row_is_claimed(sql_backend):
    tok_a, tok_b = random_token(), random_token()
    assert sql_backend.obtain("k3", tok_a, "first", 50) is True
    time.sleep(0.15)
    assert sql_backend.obtain("k3", tok_b, "second", 1000) is True

    row = _row(sql_backend, "k3")
    assert row.token_value == tok_b
    assert row.meta_value == "second"


def test_refresh(sql_backend):
    token = random_token()
    sql_backend.obtain("k4", token, "", 1000)
    before = _row(sql_backend, "k4").lock_until

    assert sql_backend.refresh("k4", token, "", 60000) is True
    assert _row(sql_backend, "k4").lock_until > before

    assert sql_backend.refresh("k4", random_token(), "", 120000) is False
    assert sql_backend.refresh("missing", token, "", 1000) is False


def test_release_expires_row_instead_of_deleting(sql_backend):
    token = random_token()
    sql_backend.obtain("k5", token, "keep", 60000)

    assert sql_backend.release("k5", random_token(), "") is False
    assert sql_backend.release("k5", token, "") is True

    row = _row(sql_backend, "k5")
    assert row is not None
    assert row.meta_value == "keep"
    assert row.lock_until < utcnow()

    # the expired row still carries the token but no longer counts as held
    assert sql_backend.release("k5", token, "") is False
    assert sql_backend.refresh("k5", token, "", 60000) is False
    assert _row(sql_backend, "k5").lock_until < utcnow()

    # the released row is free for the next claimant
    assert sql_backend.obtain("k5", random_token(), "", 1000) is True


def test_query(sql_backend):
    token = random_token()
    sql_backend.obtain("k6", token, "", 1000)

    ttl, found = sql_backend.query("k6", token, "")
    assert found is True
    assert 0 < ttl <= 1000

    assert sql_backend.query("k6", random_token(), "") == (0, False)
    assert sql_backend.query("absent", token, "") == (0, False)

    sql_backend.release("k6", token, "")
    assert sql_backend.query("k6", token, "") == (0, True)


def test_view(sql_backend):
    assert sql_backend.view("k7") is None

    token = random_token()
    sql_backend.obtain("k7", token, "job-42", 1000)
    lock_view = sql_backend.view("k7")
    assert lock_view.metadata == "job-42"
    assert lock_view.locked_by == sql_backend.locked_by
    assert lock_view.locked_pid == sql_backend.locked_pid
    assert lock_view.locked_at is not None
    assert 0 < lock_view.ttl_ms <= 1000
    assert token not in lock_view.model_dump_json()


@pytest.mark.parametrize("value", ["", "it's", "a'; DROP TABLE shedlock; --", "\\'", "🔒"])
def test_values_are_bound_not_interpolated(sql_backend, value):
    assert sql_backend.obtain(value, value or "tok", value, 1000) is True
    row = _row(sql_backend, value)
    assert row.meta_value == value
    assert sql_backend.release(value, value or "tok", value) is True


def test_custom_table_name(sql_engine):
    backend = SQLLockBackend(sql_engine, table="job_locks", locked_by="host-a", locked_pid="42")
    backend.create_schema()
    assert backend.obtain("k", random_token(), "", 1000) is True
    with sql_engine.connect() as conn:
        assert conn.execute(text("SELECT locked_by, locked_pid FROM job_locks")).first() == ("host-a", "42")


def test_malformed_timestamp_is_backend_error(sql_backend):
    token = random_token()
    sql_backend.obtain("bad", token, "", 1000)
    with sql_backend.engine.begin() as conn:
        conn.execute(text("UPDATE shedlock SET lock_until = 'not a time' WHERE lock_name = 'bad'"))

    with pytest.raises(BackendError):
        sql_backend.query("bad", token, "")


def test_missing_table_is_backend_error(sql_engine):
    backend = SQLLockBackend(sql_engine, table="no_such_table")
    with pytest.raises(BackendError):
        backend.obtain("k", random_token(), "", 1000)


def test_debug_logs_statements(sql_backend, caplog):
    sql_backend.debug = True
    with caplog.at_level(logging.INFO, logger="dblock.sync.sql_backend"):
        sql_backend.obtain("dbg", random_token(), "", 1000)
    messages = [r.getMessage() for r in caplog.records]
    assert any(m.startswith("query: ") and "INSERT INTO shedlock" in m for m in messages)
    assert "affected: 1" in messages


def test_concurrent_first_insert_admits_one(tmp_path):
    url = f"sqlite:///{tmp_path / 'race.db'}"
    setup = SQLLockBackend(create_engine(url))
    setup.create_schema()

    workers = 6
    barrier = threading.Barrier(workers)
    results = []
    results_lock = threading.Lock()

    def worker():
        backend = SQLLockBackend(create_engine(url, connect_args={"timeout": 30}))
        token = random_token()
        barrier.wait()
        try:
            ok = backend.obtain("race", token, "", 5000)
        finally:
            backend.close()
        with results_lock:
            results.append(ok)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    setup.close()

    assert results.count(True) == 1
    assert results.count(False) == workers - 1


def test_loser_of_insert_race_fails_update(sql_backend):
    winner, loser = random_token(), random_token()
    # winner's row is already in place when the loser's insert runs
    assert sql_backend.obtain("k8", winner, "", 5000) is True
    assert sql_backend.obtain("k8", loser, "", 5000) is False

    # once the winner's lease is pushed into the past the loser's update succeeds
    t = sql_backend.table
    with sql_backend.engine.begin() as conn:
        conn.execute(update(t).where(t.c.lock_name == "k8").values(lock_until=utcnow() - timedelta(seconds=5)))
    assert sql_backend.obtain("k8", loser, "", 5000) is True


def test_expired_lease_cannot_be_refreshed_or_released(sql_backend):
    token = random_token()
    assert sql_backend.obtain("k9", token, "", 50) is True
    time.sleep(0.15)

    assert sql_backend.refresh("k9", token, "", 60000) is False
    assert sql_backend.release("k9", token, "") is False
    assert sql_backend.query("k9", token, "") == (0, True)

    # nothing was revived, so another caller can claim the key
    assert sql_backend.obtain("k9", random_token(), "", 1000) is True


def test_from_url_builds_engine(tmp_path):
    backend = SQLLockBackend.from_url(f"sqlite:///{tmp_path / 'url.db'}", table="url_locks")
    backend.create_schema()
    try:
        assert backend.table.name == "url_locks"
        assert backend.obtain("k", random_token(), "", 1000) is True
    finally:
        backend.close()


def test_from_url_rejects_empty_uri():
    with pytest.raises(ConfigError):
        SQLLockBackend.from_url("")
