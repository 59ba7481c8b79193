"""Shared fixtures: every test gets its own database, marker and log directories."""
from pathlib import Path

import pytest

from queuectl.db import connect_db, init_db


@pytest.fixture
def queue_env(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("QUEUECTL_DB", str(tmp_path / "queue.db"))
    monkeypatch.setenv("QUEUECTL_PID_DIR", str(tmp_path / "pids"))
    monkeypatch.setenv("QUEUECTL_LOG_DIR", str(tmp_path / "logs"))
    return tmp_path


@pytest.fixture
def db_file(queue_env: Path) -> str:
    path = str(queue_env / "queue.db")
    init_db(path)
    return path


@pytest.fixture
def conn(db_file: str):
    c = connect_db(db_file)
    yield c
    c.close()
