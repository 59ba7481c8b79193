from dataclasses import dataclass, fields
from typing import Optional

# Job States
PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
DEAD = "dead"  # DLQ

STATES = (PENDING, PROCESSING, COMPLETED, DEAD)


@dataclass
class Job:
    id: str
    command: str
    state: str = PENDING
    attempts: int = 0
    max_retries: int = 3
    created_at: str = ""
    updated_at: str = ""
    run_at: str = ""
    error: Optional[str] = None
    worker_id: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "Job":
        keys = row.keys()
        return cls(**{f.name: row[f.name] for f in fields(cls) if f.name in keys})
