"""
Poll delay policy.

Provider settlement latency is bursty but bounded, so the delay steps up in
coarse stages instead of growing exponentially: attempts 0-5 wait the base
interval, 6-11 twice that, 12 and later three times that.
"""

from typing import Optional

from app.operations.config import BackoffPolicy, DEFAULT_BACKOFF_POLICY


def next_delay(
    attempt: int,
    base_interval_ms: int,
    policy: Optional[BackoffPolicy] = None,
) -> int:
    """
    Delay before the next status check.

    Args:
        attempt: Non-terminal checks made so far (>= 0)
        base_interval_ms: Base interval in milliseconds (> 0)
        policy: Stage thresholds (defaults to 6/12 with x2/x3)

    Returns:
        Delay in milliseconds
    """
    if attempt < 0:
        raise ValueError(f"attempt must be >= 0, got {attempt}")
    if base_interval_ms <= 0:
        raise ValueError(f"base_interval_ms must be > 0, got {base_interval_ms}")

    policy = policy or DEFAULT_BACKOFF_POLICY
    return base_interval_ms * policy.multiplier_for(attempt)


def estimated_remaining(
    attempt: int,
    max_attempts: int,
    base_interval_ms: int,
    policy: Optional[BackoffPolicy] = None,
) -> int:
    """
    Worst-case wait until the attempt ceiling, for ETA display only.

    Sums `next_delay` over attempts [attempt, max_attempts).
    """
    return sum(
        next_delay(a, base_interval_ms, policy)
        for a in range(max(attempt, 0), max_attempts)
    )
