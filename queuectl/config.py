import os

DEFAULT_CONFIG = {
    "max_retries": "3",
    "backoff_base": "2",
}

# Keys the queue itself interprets; any other key is stored verbatim.
RECOGNIZED_KEYS = set(DEFAULT_CONFIG.keys())

POLL_INTERVAL_SECONDS = 2.0

ERROR_MAX_LEN = 500


def db_path() -> str:
    return os.environ.get("QUEUECTL_DB", "queue.db")


def pid_dir() -> str:
    return os.environ.get("QUEUECTL_PID_DIR", ".pids")


def log_dir() -> str:
    return os.environ.get("QUEUECTL_LOG_DIR", "logs")
