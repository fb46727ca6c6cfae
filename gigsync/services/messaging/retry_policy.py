"""
Capped exponential backoff for redelivering failed webhook notifications.

The retry count travels in a message header so the schedule survives worker
restarts. Attempt n (1-based) waits round(0.5 * (2**n - 1)) seconds, rounding
half to even, which gives 0, 2, 4, 8, 16, 32, ... up to the cap.
"""

from dataclasses import dataclass
from enum import Enum

RETRY_COUNT_HEADER = "gigsync-number-of-retries"

# From this attempt on the delay is always the cap
_MAX_EXPONENT = 64


def exponential_delay(attempt: int, max_delay_seconds: int = 1024) -> int:
    """Delay in seconds before redelivery attempt ``attempt``."""
    if attempt <= 0:
        return 0
    if attempt >= _MAX_EXPONENT:
        return max_delay_seconds
    delay = round(0.5 * (2**attempt - 1))
    return min(max_delay_seconds, delay)


def read_retry_count(headers: dict[str, str], header: str = RETRY_COUNT_HEADER) -> int:
    """Retry count carried in message headers, 0 when absent or garbage."""
    try:
        return max(0, int(headers.get(header, 0)))
    except (TypeError, ValueError):
        return 0


class BackoffAction(str, Enum):
    DEFER = "defer"
    DEAD_LETTER = "dead_letter"


@dataclass(slots=True)
class BackoffDecision:
    action: BackoffAction
    attempt: int
    delay_seconds: int
    headers: dict[str, str]


class BackoffPolicy:
    def __init__(self, max_retries: int = 100, max_delay_seconds: int = 1024):
        self.max_retries = max_retries
        self.max_delay_seconds = max_delay_seconds

    def next_step(self, headers: dict[str, str]) -> BackoffDecision:
        """Decide whether a failed message is deferred again or dead-lettered."""
        retries = read_retry_count(headers)
        if retries >= self.max_retries:
            return BackoffDecision(
                action=BackoffAction.DEAD_LETTER,
                attempt=retries,
                delay_seconds=0,
                headers=dict(headers),
            )

        attempt = retries + 1
        next_headers = dict(headers)
        next_headers[RETRY_COUNT_HEADER] = str(attempt)
        return BackoffDecision(
            action=BackoffAction.DEFER,
            attempt=attempt,
            delay_seconds=exponential_delay(attempt, self.max_delay_seconds),
            headers=next_headers,
        )
