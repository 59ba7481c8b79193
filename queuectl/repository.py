import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from . import retry
from .config import DEFAULT_CONFIG, RECOGNIZED_KEYS, ERROR_MAX_LEN
from .errors import DuplicateIdError, StoreError, ValidationError
from .models import Job, PENDING, PROCESSING, COMPLETED, DEAD, STATES
from .utils import to_iso, utcnow

logger = logging.getLogger(__name__)

LIST_ALL = "all"
DEFAULT_LIST_LIMIT = 50


@contextmanager
def _immediate(conn: sqlite3.Connection):
    """Run the block in a BEGIN IMMEDIATE transaction (write lock up front)."""
    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.Error as e:
        raise StoreError(f"Cannot start transaction: {e}") from e
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        try:
            conn.commit()
        except BaseException:
            conn.rollback()
            raise


def _positive_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a positive integer.")
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a positive integer.")
    if isinstance(value, float) and value != n:
        raise ValidationError(f"{key} must be a positive integer.")
    if n < 1:
        raise ValidationError(f"{key} must be a positive integer.")
    return n


# ---------- Config ----------
def get_config(conn, key: str, default: Optional[str] = None) -> Optional[str]:
    try:
        row = conn.execute("SELECT value FROM config WHERE key=?", (key,)).fetchone()
    except sqlite3.Error as e:
        raise StoreError(f"DB error while reading config {key}: {e}") from e
    return row["value"] if row else default


def get_all_config(conn) -> Dict[str, str]:
    try:
        cur = conn.execute("SELECT key, value FROM config ORDER BY key")
        return {r["key"]: r["value"] for r in cur.fetchall()}
    except sqlite3.Error as e:
        raise StoreError(f"DB error while reading config: {e}") from e


def set_config(conn, key: str, value: str):
    if not key or not key.strip():
        raise ValidationError("Config key cannot be empty.")
    if key in RECOGNIZED_KEYS:
        value = str(_positive_int(key, value))
    try:
        with conn:
            conn.execute(
                "INSERT INTO config(key,value) VALUES(?,?) "
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (key, str(value)),
            )
    except sqlite3.Error as e:
        raise StoreError(f"DB error while writing config {key}: {e}") from e


def get_int_config(conn, key: str) -> int:
    """Read a recognized numeric setting live; bad stored values fall back to the default."""
    raw = get_config(conn, key, DEFAULT_CONFIG[key])
    try:
        return _positive_int(key, raw)
    except ValidationError:
        logger.warning("Invalid config %s=%r; using default %s", key, raw, DEFAULT_CONFIG[key])
        return int(DEFAULT_CONFIG[key])


# ---------- Jobs: enqueue ----------
def parse_payload(text: str) -> Dict[str, Any]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Job payload is not valid JSON: {e.msg}")
    if not isinstance(payload, dict):
        raise ValidationError("Job payload must be a JSON object.")
    return payload


def enqueue_job(conn, payload: Mapping[str, Any]) -> Job:
    job_id = payload.get("id")
    command = payload.get("command")
    if not isinstance(job_id, str) or not job_id.strip():
        raise ValidationError('Job must have a non-empty string "id".')
    if not isinstance(command, str) or not command.strip():
        raise ValidationError('Job must have a non-empty string "command".')

    max_retries = payload.get("max_retries")
    # 0 means "use the configured default".
    if max_retries is None or (max_retries == 0 and not isinstance(max_retries, bool)):
        mret = get_int_config(conn, "max_retries")
    else:
        mret = _positive_int("max_retries", max_retries)

    ts = to_iso(utcnow())
    try:
        with conn:
            conn.execute(
                """INSERT INTO jobs
                   (id, command, state, attempts, max_retries, created_at, updated_at, run_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (job_id, command, PENDING, 0, mret, ts, ts, ts),
            )
    except sqlite3.IntegrityError:
        raise DuplicateIdError(job_id)
    except sqlite3.Error as e:
        raise StoreError(f"DB error while inserting job: {e}") from e

    return Job(id=job_id, command=command, max_retries=mret,
               created_at=ts, updated_at=ts, run_at=ts)


# ---------- Jobs: claim / complete / fail ----------
def claim_one(conn, worker_id: str, now: Optional[datetime] = None) -> Optional[Job]:
    """
    Atomically move the oldest eligible pending job to processing.

    The sub-select and the update are one statement inside one write
    transaction, so two callers can never be handed the same row.
    """
    ts = to_iso(now or utcnow())
    try:
        with _immediate(conn):
            rows = conn.execute(
                """UPDATE jobs
                   SET state=?, updated_at=?, worker_id=?
                   WHERE id = (
                       SELECT id FROM jobs
                       WHERE state=? AND run_at <= ?
                       ORDER BY created_at ASC
                       LIMIT 1
                   )
                   RETURNING *""",
                (PROCESSING, ts, worker_id, PENDING, ts),
            ).fetchall()
    except sqlite3.Error as e:
        raise StoreError(f"DB error while claiming job: {e}") from e
    return Job.from_row(rows[0]) if rows else None


def complete(conn, job_id: str) -> bool:
    try:
        with conn:
            res = conn.execute(
                "UPDATE jobs SET state=?, updated_at=?, error=NULL WHERE id=? AND state=?",
                (COMPLETED, to_iso(utcnow()), job_id, PROCESSING),
            )
    except sqlite3.Error as e:
        raise StoreError(f"DB error while completing job {job_id}: {e}") from e
    return res.rowcount == 1


def record_failure(conn, job: Job, error: str, now: Optional[datetime] = None) -> retry.RetryDecision:
    """Apply the retry/dead-letter transition for a failed execution."""
    now = now or utcnow()
    # Read on every failure so operators can tune the queue live.
    base = get_int_config(conn, "backoff_base")
    decision = retry.decide(job.attempts, job.max_retries, base, now)
    ts = to_iso(now)
    message = (error or "")[:ERROR_MAX_LEN]

    try:
        with conn:
            if decision.is_dead:
                conn.execute(
                    """UPDATE jobs
                       SET state=?, attempts=?, updated_at=?, error=?
                       WHERE id=? AND state=?""",
                    (DEAD, decision.attempts, ts, message, job.id, PROCESSING),
                )
            else:
                conn.execute(
                    """UPDATE jobs
                       SET state=?, attempts=?, updated_at=?, run_at=?, error=?
                       WHERE id=? AND state=?""",
                    (PENDING, decision.attempts, ts, decision.run_at, message, job.id, PROCESSING),
                )
    except sqlite3.Error as e:
        raise StoreError(f"DB error while recording failure of job {job.id}: {e}") from e
    return decision


# ---------- Queries ----------
def get_job(conn, job_id: str) -> Optional[Job]:
    try:
        row = conn.execute("SELECT * FROM jobs WHERE id=?", (job_id,)).fetchone()
    except sqlite3.Error as e:
        raise StoreError(f"DB error while reading job {job_id}: {e}") from e
    return Job.from_row(row) if row else None


def list_jobs(conn, state: str = LIST_ALL, limit: int = DEFAULT_LIST_LIMIT) -> List[Job]:
    if state != LIST_ALL and state not in STATES:
        raise ValidationError(f"Unknown state {state!r}; expected one of: {', '.join(STATES)}, all")
    try:
        if state == LIST_ALL:
            rows = conn.execute(
                "SELECT * FROM jobs ORDER BY updated_at DESC LIMIT ?", (int(limit),)
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM jobs WHERE state=? ORDER BY updated_at DESC LIMIT ?",
                (state, int(limit)),
            ).fetchall()
    except sqlite3.Error as e:
        raise StoreError(f"DB error while listing jobs: {e}") from e
    return [Job.from_row(r) for r in rows]


def count_by_state(conn) -> Dict[str, int]:
    out = {s: 0 for s in STATES}
    try:
        for r in conn.execute("SELECT state, COUNT(1) AS c FROM jobs GROUP BY state"):
            out[r["state"]] = r["c"]
    except sqlite3.Error as e:
        raise StoreError(f"DB error while counting jobs: {e}") from e
    return out


# ---------- DLQ ----------
def dlq_list(conn, limit: int = DEFAULT_LIST_LIMIT) -> List[Job]:
    return list_jobs(conn, state=DEAD, limit=limit)


def dlq_retry(conn, job_id: str) -> bool:
    if not job_id or not job_id.strip():
        raise ValidationError("Job id cannot be empty.")
    ts = to_iso(utcnow())
    try:
        with conn:
            res = conn.execute(
                """UPDATE jobs
                   SET state=?, attempts=0, updated_at=?, run_at=?, error=NULL
                   WHERE id=? AND state=?""",
                (PENDING, ts, ts, job_id, DEAD),
            )
        return res.rowcount == 1
    except sqlite3.Error as e:
        raise StoreError(f"DB error during DLQ retry: {e}") from e
