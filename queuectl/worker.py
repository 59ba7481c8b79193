"""
Worker process: poll -> claim -> execute -> record, one job at a time.

Run as ``python -m queuectl.worker``; the supervisor does this for each
worker it starts.
"""
import enum
import logging
import os
import signal
import sys
import time
from typing import Optional

from .config import POLL_INTERVAL_SECONDS, pid_dir
from .db import connect_db, init_db
from .errors import StoreError
from .executor import EXIT_NOT_STARTED, ExecutionResult, run_command
from .models import Job
from .registry import WorkerRegistry
from .repository import claim_one, complete, record_failure
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


class WorkerState(enum.Enum):
    RUNNING = "running"
    DRAINING = "draining"  # shutdown requested, finishing the in-flight job
    STOPPED = "stopped"


class _StopPolling(Exception):
    """Raised from the signal handler to cut an idle poll sleep short."""


class Worker:
    def __init__(
        self,
        worker_id: str,
        conn,
        registry: Optional[WorkerRegistry] = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        pid: Optional[int] = None,
    ):
        self.worker_id = worker_id
        self.conn = conn
        self.registry = registry
        self.poll_interval = poll_interval
        self.pid = pid if pid is not None else os.getpid()
        self.state = WorkerState.RUNNING
        self._idle = False

    # ---------- signals ----------
    def request_shutdown(self, signum=None, frame=None):
        if self.state is not WorkerState.RUNNING:
            return
        if signum is not None:
            logger.info("Received %s. Shutting down gracefully...", signal.Signals(signum).name)
        if self._idle:
            self.state = WorkerState.STOPPED
            raise _StopPolling()
        self.state = WorkerState.DRAINING

    def install_signal_handlers(self):
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, self.request_shutdown)

    # ---------- loop ----------
    def claim(self) -> Optional[Job]:
        try:
            return claim_one(self.conn, self.worker_id)
        except StoreError as e:
            logger.error("Error fetching job: %s", e)
            return None

    def process(self, job: Job) -> None:
        logger.info("Processing job: %s (%s)", job.id, job.command)
        try:
            result = run_command(job.command)
        except Exception as e:
            logger.exception("Unexpected error while executing job %s", job.id)
            result = ExecutionResult(EXIT_NOT_STARTED, stderr=f"{type(e).__name__}: {e}")
        try:
            if result.ok:
                complete(self.conn, job.id)
                logger.info("Completed job: %s", job.id)
                return

            logger.error("Failed job: %s. Error: %s", job.id, result.error_message)
            decision = record_failure(self.conn, job, result.error_message)
            if decision.is_dead:
                logger.info("Job %s moved to DLQ after %d attempt(s).", job.id, decision.attempts)
            else:
                logger.info(
                    "Job %s will retry in %ss at %s", job.id, decision.delay_seconds, decision.run_at
                )
        except StoreError as e:
            # No reaper exists: the job stays in 'processing' until an operator acts.
            logger.error("Could not record outcome of job %s: %s", job.id, e)

    def run_once(self) -> bool:
        """Claim and process at most one job. Returns whether a job was processed."""
        job = self.claim()
        if job is None:
            return False
        try:
            self.process(job)
        except Exception:
            logger.exception("Unexpected error while handling job %s", job.id)
        if self.state is WorkerState.DRAINING:
            logger.info("Job %s finished during shutdown; exiting.", job.id)
        return True

    def _sleep(self):
        try:
            self._idle = True
            time.sleep(self.poll_interval)
            self._idle = False
        except _StopPolling:
            self._idle = False

    def run(self):
        logger.info("Worker started. Listening for jobs...")
        try:
            while self.state is WorkerState.RUNNING:
                if not self.run_once() and self.state is WorkerState.RUNNING:
                    self._sleep()
        finally:
            self._cleanup()

    def _cleanup(self):
        if self.registry is not None and not self.registry.unregister(self.pid):
            logger.debug("No lifecycle marker to remove for pid %s", self.pid)
        try:
            self.conn.close()
        finally:
            self.state = WorkerState.STOPPED
            logger.info("Shutdown complete.")


def main() -> int:
    worker_id = os.environ.get("QUEUECTL_WORKER_ID") or f"worker-{os.getpid()}"
    configure_logging(worker_id)
    registry = WorkerRegistry(pid_dir())

    try:
        init_db()
        conn = connect_db()
    except StoreError as e:
        logger.critical("Cannot open job store, exiting: %s", e)
        registry.unregister(os.getpid())
        return 1

    worker = Worker(worker_id, conn, registry=registry)
    worker.install_signal_handlers()
    worker.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
