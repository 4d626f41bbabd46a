"""
Exponential backoff calculation utilities.

Shared by:
- FetchPolicy (panlink/crawler/fetcher.py)

delay(retry) = min(base_delay * exponential_base ^ (retry - 1), max_delay)
"""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffConfig:
    """Configuration for exponential backoff calculation.

    - base_delay: Delay before the first retry in seconds (default: 0.5)
    - max_delay: Maximum delay cap in seconds (default: 8.0)
    - exponential_base: Base for exponential calculation (default: 2.0)
    - jitter_factor: Random variation factor, 0 disables jitter (default: 0.0)

    Example:
        >>> config = BackoffConfig(base_delay=1.0, max_delay=30.0)
    """

    base_delay: float = 0.5
    max_delay: float = 8.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.exponential_base <= 1:
            raise ValueError("exponential_base must be > 1")
        if self.jitter_factor < 0 or self.jitter_factor > 1:
            raise ValueError("jitter_factor must be between 0 and 1")


def calculate_backoff(
    retry: int,
    config: BackoffConfig | None = None,
    *,
    add_jitter: bool = True,
) -> float:
    """Calculate the delay before a retry.

    Args:
        retry: Retry number (1-indexed, 1 = first retry)
        config: Backoff configuration (default: BackoffConfig())
        add_jitter: Whether to add random jitter when configured (default: True)

    Returns:
        Delay in seconds

    Example:
        >>> calculate_backoff(1)  # First retry: base
        0.5
        >>> calculate_backoff(3)  # Third retry: base * 4
        2.0
        >>> calculate_backoff(10)  # Capped at max_delay
        8.0
    """
    if retry < 1:
        raise ValueError("retry must be >= 1")

    if config is None:
        config = BackoffConfig()

    delay = min(
        config.base_delay * (config.exponential_base ** (retry - 1)),
        config.max_delay,
    )

    if add_jitter and config.jitter_factor > 0:
        jitter_range = delay * config.jitter_factor
        delay += random.uniform(-jitter_range, jitter_range)

    return max(0.0, delay)


def calculate_total_delay(
    max_retries: int,
    config: BackoffConfig | None = None,
) -> float:
    """Calculate total delay for all retry attempts (worst case, no jitter).

    Useful for checking a retry budget against a batch deadline.

    Example:
        >>> calculate_total_delay(3)  # 0.5 + 1 + 2
        3.5
    """
    if max_retries < 0:
        raise ValueError("max_retries must be non-negative")

    if config is None:
        config = BackoffConfig()

    total = 0.0
    for retry in range(1, max_retries + 1):
        total += calculate_backoff(retry, config, add_jitter=False)

    return total
