from __future__ import annotations

def calc_next_delay(attempts: int, base_seconds: int = 2, max_seconds: int = 3600) -> int:
    """
    Exponential backoff: base * 2^(attempts-1), capped at max_seconds.
    attempts: attempts already made (the claim has counted the current one)
    base 2 -> 2s, 4s, 8s ...
    """
    attempts = max(1, attempts)
    delay = base_seconds * (2 ** (attempts - 1))
    return min(max_seconds, delay)
