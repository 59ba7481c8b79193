import logging
import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .config import db_path, log_dir, pid_dir
from .errors import ValidationError
from .registry import WorkerRegistry

logger = logging.getLogger(__name__)


@dataclass
class StopReport:
    signalled: List[int] = field(default_factory=list)
    stale: List[int] = field(default_factory=list)


def _worker_env(worker_id: str) -> dict:
    env = dict(os.environ)
    env.update(
        QUEUECTL_WORKER_ID=worker_id,
        QUEUECTL_DB=os.path.abspath(db_path()),
        QUEUECTL_PID_DIR=os.path.abspath(pid_dir()),
        QUEUECTL_LOG_DIR=os.path.abspath(log_dir()),
    )
    return env


def start_workers(count: int, registry: Optional[WorkerRegistry] = None) -> List[int]:
    """Spawn `count` detached worker processes, each logging to its own file."""
    if count < 1:
        raise ValidationError("count must be at least 1")
    registry = registry or WorkerRegistry(pid_dir())
    logs = Path(log_dir())
    logs.mkdir(parents=True, exist_ok=True)

    stamp = int(time.time() * 1000)
    pids = []
    for i in range(count):
        worker_id = f"worker-{os.getpid()}-{i}"
        log_path = logs / f"worker-{stamp}-{i}.log"
        with open(log_path, "ab") as log_file:
            proc = subprocess.Popen(
                [sys.executable, "-m", "queuectl.worker"],
                stdin=subprocess.DEVNULL,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                env=_worker_env(worker_id),
                start_new_session=True,
            )
        registry.register(proc.pid)
        logger.info("Started %s with PID %s (log: %s)", worker_id, proc.pid, log_path)
        pids.append(proc.pid)
    return pids


def stop_workers(registry: Optional[WorkerRegistry] = None) -> StopReport:
    """
    Ask every registered worker to shut down.

    Sends SIGTERM and removes the marker; does not wait for the worker to
    finish its in-flight job. Markers of processes that no longer exist are
    removed and reported as stale.
    """
    registry = registry or WorkerRegistry(pid_dir())
    report = StopReport()
    for pid in registry.list_all():
        try:
            os.kill(pid, signal.SIGTERM)
        except (ProcessLookupError, PermissionError):
            # Gone, or the pid now belongs to another user's process.
            logger.warning("Worker %s is not running (stale marker)", pid)
            report.stale.append(pid)
        else:
            logger.info("Sent SIGTERM to worker %s", pid)
            report.signalled.append(pid)
        registry.unregister(pid)
    return report
