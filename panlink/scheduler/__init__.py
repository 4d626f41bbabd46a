"""
panlink scheduler module.
Provides adaptive concurrency control for search tasks.
"""

from panlink.scheduler.concurrency import AdaptiveConcurrencyController, LimiterBounds

__all__ = [
    "AdaptiveConcurrencyController",
    "LimiterBounds",
]
