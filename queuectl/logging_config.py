"""
Logging setup for worker processes.

Workers write to stderr; the supervisor points that stream at the worker's
own log file.
"""
import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(worker_id)s] %(name)s: %(message)s"


class WorkerIdFilter(logging.Filter):
    """Stamps every record with the worker's identity."""

    def __init__(self, worker_id: str):
        super().__init__()
        self.worker_id = worker_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.worker_id = self.worker_id
        return True


def configure_logging(worker_id: str, level: int = logging.INFO) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(WorkerIdFilter(worker_id))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
