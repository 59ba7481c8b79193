class QueueError(Exception):
    """Base class for errors surfaced to queue callers."""


class ValidationError(QueueError, ValueError):
    """Malformed payload or argument; nothing was persisted."""


class DuplicateIdError(QueueError, ValueError):
    def __init__(self, job_id: str):
        super().__init__(f"Job '{job_id}' already exists.")
        self.job_id = job_id


class StoreError(QueueError, RuntimeError):
    """The database could not be opened, read or written."""
