import random


def exponential_backoff(
    attempt: int,
    base: float = 0.5,
    cap: float = 30.0,
    jitter: bool = True,
    floor: float = 0.0,
) -> float:
    """
    Exponential backoff with optional jitter.

    The result never drops below `floor` (the previous delay, for a
    non-decreasing sequence) and never exceeds `cap`.
    """
    delay = min(cap, base * (2 ** attempt))
    if jitter:
        delay *= random.uniform(0.7, 1.3)
    return min(cap, max(floor, delay))
