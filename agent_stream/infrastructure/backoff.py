"""Backoff — exponential retry delays with ±25% jitter (milliseconds)."""

import random


def backoff_ms(attempt: int, base_delay_ms: int, max_delay_ms: int) -> int:
    delay = min(max_delay_ms, (2 ** attempt) * base_delay_ms)
    return int(delay * random.uniform(0.75, 1.25))  # nosec B311
