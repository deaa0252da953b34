"""Exponential backoff schedule for reconnection."""


def backoff_delay(attempt: int, base_delay: float, max_delay: float, multiplier: float = 2.0) -> float:
    """Delay before reconnect attempt `attempt` (1-based).

    min(base_delay * multiplier^(attempt-1), max_delay)
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return min(base_delay * multiplier ** (attempt - 1), max_delay)
