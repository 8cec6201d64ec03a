import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryError(Exception):
    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 2.0
    backoff: str = "linear"
    max_delay_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff not in ("linear", "exponential"):
            raise ValueError(f"Unknown backoff: {self.backoff}")

    def delay_for(self, failed_attempt: int) -> float:
        """Wait before the attempt that follows failed attempt number failed_attempt (1-based)."""
        if self.backoff == "exponential":
            delay = self.base_delay_seconds * (2 ** (failed_attempt - 1))
        else:
            delay = self.base_delay_seconds * failed_attempt
        return min(delay, self.max_delay_seconds)


def retry_with_backoff(
    operation: Callable[[], T],
    policy: RetryPolicy,
    is_transient: Callable[[BaseException], bool],
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
) -> T:
    """
    Run operation until it succeeds, a non-transient error is raised, or
    policy.max_attempts attempts have been made.

    Non-transient errors propagate unchanged. Exhausting the attempts raises
    RetryError carrying the last error.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except Exception as exc:
            if not is_transient(exc):
                raise
            if attempt >= policy.max_attempts:
                raise RetryError(attempt, exc) from exc

            delay = policy.delay_for(attempt)
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            logger.warning(
                "Attempt %d/%d failed (%s); retrying in %.1fs",
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            sleep(delay)

