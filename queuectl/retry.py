"""
Retry/backoff policy applied after a failed execution.

The delay for the k-th failure is ``backoff_base ** k`` whole seconds, where k
is the attempt count *after* the failure. A job whose new attempt count
reaches ``max_retries`` goes to the dead-letter queue instead.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .models import PENDING, DEAD
from .utils import iso_in_utc_from_seconds_from_now


@dataclass(frozen=True)
class RetryDecision:
    state: str
    attempts: int
    delay_seconds: Optional[int] = None
    run_at: Optional[str] = None

    @property
    def is_dead(self) -> bool:
        return self.state == DEAD


def backoff_delay(base: int, attempts: int) -> int:
    return int(base) ** int(attempts)


def decide(attempts: int, max_retries: int, backoff_base: int, now: datetime) -> RetryDecision:
    new_attempts = attempts + 1
    if new_attempts >= max_retries:
        return RetryDecision(state=DEAD, attempts=new_attempts)

    delay = backoff_delay(backoff_base, new_attempts)
    return RetryDecision(
        state=PENDING,
        attempts=new_attempts,
        delay_seconds=delay,
        run_at=iso_in_utc_from_seconds_from_now(delay, now=now),
    )
