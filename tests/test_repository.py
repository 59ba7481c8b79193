"""Job store operations: enqueue, config, counts, listing, DLQ replay."""
import sqlite3

import pytest

from queuectl import db
from queuectl.db import connect_db, init_db
from queuectl.errors import DuplicateIdError, StoreError, ValidationError
from queuectl.models import PENDING, PROCESSING, COMPLETED, DEAD
from queuectl.repository import (
    claim_one, complete, count_by_state, dlq_list, dlq_retry, enqueue_job,
    get_all_config, get_config, get_int_config, get_job, list_jobs,
    parse_payload, record_failure, set_config, _immediate,
)


def _kill(conn, job_id):
    """Drive a job into the DLQ by failing it until it dies."""
    while True:
        job = claim_one(conn, "w1")
        assert job is not None and job.id == job_id
        if record_failure(conn, job, "boom").is_dead:
            return
        conn.execute("UPDATE jobs SET run_at=created_at WHERE id=?", (job_id,))
        conn.commit()


def test_init_seeds_defaults(conn):
    assert get_all_config(conn) == {"backoff_base": "2", "max_retries": "3"}


def test_init_keeps_operator_changes(db_file, conn):
    set_config(conn, "backoff_base", "5")
    init_db(db_file)
    assert get_config(conn, "backoff_base") == "5"


def test_connect_to_unreachable_path_fails_fast(tmp_path):
    with pytest.raises(StoreError):
        connect_db(str(tmp_path / "missing-dir" / "queue.db"))


def test_enqueue_defaults(conn):
    job = enqueue_job(conn, {"id": "a", "command": "true"})
    stored = get_job(conn, "a")

    assert stored == job
    assert stored.state == PENDING
    assert stored.attempts == 0
    assert stored.max_retries == 3
    assert stored.run_at == stored.created_at == stored.updated_at
    assert stored.error is None
    assert stored.worker_id is None


def test_enqueue_uses_live_default_max_retries(conn):
    set_config(conn, "max_retries", "7")
    assert enqueue_job(conn, {"id": "a", "command": "true"}).max_retries == 7
    assert enqueue_job(conn, {"id": "b", "command": "true", "max_retries": 2}).max_retries == 2


def test_enqueue_duplicate_leaves_original(conn):
    enqueue_job(conn, {"id": "a", "command": "echo first", "max_retries": 5})

    with pytest.raises(DuplicateIdError, match="already exists"):
        enqueue_job(conn, {"id": "a", "command": "echo second"})

    stored = get_job(conn, "a")
    assert stored.command == "echo first"
    assert stored.max_retries == 5


@pytest.mark.parametrize(
    "payload",
    [
        {"command": "true"},
        {"id": "", "command": "true"},
        {"id": "a"},
        {"id": "a", "command": "   "},
        {"id": 5, "command": "true"},
        {"id": "a", "command": "true", "max_retries": "lots"},
        {"id": "a", "command": "true", "max_retries": -2},
        {"id": "a", "command": "true", "max_retries": True},
    ],
)
def test_enqueue_rejects_malformed_payload(conn, payload):
    with pytest.raises(ValidationError):
        enqueue_job(conn, payload)
    assert count_by_state(conn)[PENDING] == 0


def test_parse_payload():
    assert parse_payload('{"id": "a", "command": "ls"}') == {"id": "a", "command": "ls"}
    with pytest.raises(ValidationError, match="not valid JSON"):
        parse_payload("{id: a}")
    with pytest.raises(ValidationError, match="JSON object"):
        parse_payload('["a", "ls"]')


def test_set_config_upsert_and_free_form_keys(conn):
    set_config(conn, "backoff_base", "3")
    set_config(conn, "backoff_base", "3")
    set_config(conn, "owner", "ops-team")

    assert get_config(conn, "backoff_base") == "3"
    assert get_config(conn, "owner") == "ops-team"
    assert get_config(conn, "missing", "fallback") == "fallback"


@pytest.mark.parametrize("key,value", [("backoff_base", "0"), ("max_retries", "x"), ("max_retries", "-1")])
def test_set_config_validates_recognized_keys(conn, key, value):
    with pytest.raises(ValidationError):
        set_config(conn, key, value)
    assert get_config(conn, key) in ("2", "3")


def test_get_int_config_falls_back_on_bad_stored_value(conn):
    conn.execute("UPDATE config SET value='banana' WHERE key='backoff_base'")
    conn.commit()
    assert get_int_config(conn, "backoff_base") == 2


def test_count_by_state_includes_every_state(conn):
    enqueue_job(conn, {"id": "a", "command": "true"})
    enqueue_job(conn, {"id": "b", "command": "true"})
    claim_one(conn, "w1")

    assert count_by_state(conn) == {PENDING: 1, PROCESSING: 1, COMPLETED: 0, DEAD: 0}


def test_list_jobs_most_recently_updated_first(conn):
    for job_id in ("a", "b", "c"):
        enqueue_job(conn, {"id": job_id, "command": "true"})
    job = claim_one(conn, "w1")
    complete(conn, job.id)

    assert [j.id for j in list_jobs(conn)][0] == "a"
    assert [j.id for j in list_jobs(conn, state=PENDING)] == ["c", "b"]
    assert [j.id for j in list_jobs(conn, state=COMPLETED)] == ["a"]
    assert len(list_jobs(conn, limit=2)) == 2


def test_list_jobs_rejects_unknown_state(conn):
    with pytest.raises(ValidationError):
        list_jobs(conn, state="failed")


def test_dlq_retry_requeues_dead_job(conn):
    enqueue_job(conn, {"id": "a", "command": "false", "max_retries": 2})
    _kill(conn, "a")
    assert [j.id for j in dlq_list(conn)] == ["a"]

    assert dlq_retry(conn, "a") is True

    job = get_job(conn, "a")
    assert job.state == PENDING
    assert job.attempts == 0
    assert job.error is None
    assert job.run_at == job.updated_at
    assert claim_one(conn, "w2").id == "a"


def test_dlq_retry_ignores_jobs_not_in_dlq(conn):
    enqueue_job(conn, {"id": "a", "command": "true"})
    assert dlq_retry(conn, "a") is False
    assert dlq_retry(conn, "nope") is False
    with pytest.raises(ValidationError):
        dlq_retry(conn, " ")


def test_connect_rejects_sqlite_without_returning(db_file, monkeypatch):
    monkeypatch.setattr(db.sqlite3, "sqlite_version_info", (3, 31, 1))
    monkeypatch.setattr(db.sqlite3, "sqlite_version", "3.31.1")
    with pytest.raises(StoreError, match="3.31.1 is too old"):
        connect_db(db_file)


def test_enqueue_zero_max_retries_uses_default(conn):
    set_config(conn, "max_retries", "4")
    assert enqueue_job(conn, {"id": "a", "command": "true", "max_retries": 0}).max_retries == 4
    assert get_job(conn, "a").max_retries == 4


class _CommitFails:
    def __init__(self):
        self.calls = []

    def execute(self, sql):
        self.calls.append(sql)

    def commit(self):
        raise sqlite3.OperationalError("disk I/O error")

    def rollback(self):
        self.calls.append("ROLLBACK")


def test_failed_commit_rolls_back():
    fake = _CommitFails()
    with pytest.raises(sqlite3.OperationalError):
        with _immediate(fake):
            pass
    assert fake.calls == ["BEGIN IMMEDIATE", "ROLLBACK"]
