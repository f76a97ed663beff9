import random
from typing import Optional


def compute_backoff_seconds(
    attempt: int,
    *,
    base_seconds: float,
    max_seconds: float,
    jitter: float = 0.2,
    rng: Optional[random.Random] = None,
) -> float:
    """Exponential backoff based on attempt number (1-indexed), jittered by +/- `jitter` and capped."""
    delay = min(max_seconds, base_seconds * (2 ** max(attempt - 1, 0)))
    if jitter:
        spread = (rng or random).uniform(1 - jitter, 1 + jitter)
        delay = delay * spread
    return max(0.0, min(max_seconds, delay))
