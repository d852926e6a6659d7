"""Backoff for failing targets and bounds on compliance polling."""

from dataclasses import dataclass
from datetime import datetime, timedelta

__all__ = [
    "RetryPolicy",
    "CompliancePollConfig",
]


@dataclass
class RetryPolicy:
    """Exponential backoff between attempts on a failing target.

    With `multiplier` set to 1.0 this is a fixed interval poll.
    """

    max_attempts: int = 60
    """Consecutive failures after which the target is marked exhausted."""

    interval: float = 60.0
    """Seconds to wait after the first failure."""

    multiplier: float = 2.0
    """Growth factor of the delay for each further failure."""

    max_interval: float = 3600.0
    """Upper bound on the delay in seconds."""

    def delay(self, failures: int) -> float:
        """Return the seconds to wait after `failures` consecutive failures."""
        if failures <= 0:
            return 0.0
        return min(self.max_interval, self.interval * self.multiplier ** (failures - 1))

    def ready(
        self, failures: int, last_attempt: datetime | None, now: datetime
    ) -> bool:
        """Return True if enough time has passed to attempt again."""
        if last_attempt is None:
            return True
        return now - last_attempt >= timedelta(seconds=self.delay(failures))

    def exhausted(self, failures: int) -> bool:
        """Return True once the retry budget is spent."""
        return failures >= self.max_attempts


@dataclass
class CompliancePollConfig:
    """How long to wait for a target to report an applied bundle."""

    attempts: int = 6
    """Number of compliance checks after an apply."""

    interval: float = 10.0
    """Seconds between compliance checks."""
