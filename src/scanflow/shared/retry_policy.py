import random
from datetime import timedelta

JITTER_RATIO = 0.2

def compute_retry_delay(attempts: int, base_delay_ms: int, max_delay_ms: int, jitter_ratio=JITTER_RATIO, rand=random.random) -> int:
    """
    Backoff delay in milliseconds for a job that has failed ``attempts`` times.

    The delay doubles with every attempt, is capped at ``max_delay_ms`` and is
    then spread by a uniform jitter of +/- ``jitter_ratio``.
    """
    delay = min(base_delay_ms * (2 ** attempts), max_delay_ms)
    jitter = delay * jitter_ratio * (rand() * 2 - 1)
    return max(0, int(round(delay + jitter)))

def next_retry_time(now, attempts, base_delay_ms, max_delay_ms, rand=random.random):
    delay_ms = compute_retry_delay(attempts, base_delay_ms, max_delay_ms, rand=rand)
    return now + timedelta(milliseconds=delay_ms), delay_ms
