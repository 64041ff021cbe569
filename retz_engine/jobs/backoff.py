"""Poll interval backoff."""

from core.constants import DEFAULT_MIN_POLL_INTERVAL, DEFAULT_MAX_POLL_INTERVAL


def next_delay(
    iteration: int,
    min_seconds: int = DEFAULT_MIN_POLL_INTERVAL,
    max_seconds: int = DEFAULT_MAX_POLL_INTERVAL
) -> int:
    """
    Delay before the next poll: ``2 ** iteration`` clamped to [min, max].

    Args:
        iteration: Number of consecutive ticks without new output
        min_seconds: Lower bound
        max_seconds: Upper bound

    Example:
        >>> [next_delay(i) for i in range(6)]
        [1, 2, 4, 8, 16, 20]
    """
    iteration = max(iteration, 0)
    # Saturated: 2 ** iteration > max_seconds, skip building a huge int
    if iteration > max_seconds.bit_length():
        return max_seconds
    return min(max(min_seconds, 2 ** iteration), max_seconds)
