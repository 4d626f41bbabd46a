"""
Adaptive concurrency controller for fetch+extract tasks.

Bounds the number of in-flight tasks with a limit that follows observed
latency:
- Every adjust interval, the mean latency of tasks completed since the last
  adjustment is compared with a threshold
- Above threshold: limit -= step (floored at min_limit)
- Otherwise: limit += step (capped at max_limit)
- No completed tasks: limit unchanged

Acquisition blocks until ``active < limit``. The ``slot()`` context manager
releases on success, failure and cancellation alike and records the task's
latency.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from panlink.utils.config import ConcurrencyConfig, get_settings
from panlink.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class LimiterBounds:
    """Static bounds of the controller."""

    min_limit: int = 2
    max_limit: int = 20
    initial: int = 10
    step: int = 2
    latency_threshold: float = 3.0
    adjust_interval: float = 5.0
    sample_window: int = 200

    def __post_init__(self) -> None:
        if self.min_limit < 1:
            raise ValueError("min_limit must be >= 1")
        if self.min_limit > self.max_limit:
            raise ValueError("min_limit must be <= max_limit")
        if self.step < 1:
            raise ValueError("step must be >= 1")
        self.initial = max(self.min_limit, min(self.initial, self.max_limit))

    @classmethod
    def from_config(cls, config: ConcurrencyConfig) -> LimiterBounds:
        return cls(
            min_limit=config.min_limit,
            max_limit=config.max_limit,
            initial=config.initial,
            step=config.step,
            latency_threshold=config.latency_threshold_seconds,
            adjust_interval=config.adjust_interval_seconds,
            sample_window=config.sample_window,
        )


class AdaptiveConcurrencyController:
    """Latency-driven concurrency limiter.

    Example:
        controller = AdaptiveConcurrencyController()
        await controller.start()
        async with controller.slot():
            await fetch_and_extract()
        await controller.stop()
    """

    def __init__(
        self,
        bounds: LimiterBounds | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if bounds is None:
            bounds = LimiterBounds.from_config(get_settings().concurrency)
        self.bounds = bounds
        self._clock = clock
        self._limit = bounds.initial
        self._active = 0
        self._samples: deque[float] = deque(maxlen=bounds.sample_window)
        self._condition = asyncio.Condition()
        self._adjustments = 0
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def active(self) -> int:
        return self._active

    async def acquire(self) -> None:
        """Wait until a slot is free and take it."""
        async with self._condition:
            await self._condition.wait_for(lambda: self._active < self._limit)
            self._active += 1

    async def release(self, latency: float | None = None) -> None:
        """Return a slot, optionally recording the task latency."""
        async with self._condition:
            if self._active > 0:
                self._active -= 1
            if latency is not None:
                self._samples.append(latency)
            self._condition.notify_all()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold a slot for the duration of the block."""
        await self.acquire()
        started = self._clock()
        try:
            yield
        finally:
            # Shielded so a cancelled task still gives its slot back
            await asyncio.shield(self.release(self._clock() - started))

    def record_latency(self, latency: float) -> None:
        """Record a latency sample without holding a slot."""
        self._samples.append(latency)

    async def adjust(self) -> int:
        """Run one adjustment step.

        Returns:
            The limit after adjustment.
        """
        async with self._condition:
            if not self._samples:
                return self._limit

            mean_latency = sum(self._samples) / len(self._samples)
            sample_count = len(self._samples)
            self._samples.clear()

            previous = self._limit
            if mean_latency > self.bounds.latency_threshold:
                self._limit = max(self.bounds.min_limit, self._limit - self.bounds.step)
            else:
                self._limit = min(self.bounds.max_limit, self._limit + self.bounds.step)

            if self._limit != previous:
                self._adjustments += 1
                logger.info(
                    "Concurrency limit adjusted",
                    previous=previous,
                    limit=self._limit,
                    mean_latency=round(mean_latency, 3),
                    samples=sample_count,
                )
            if self._limit > previous:
                self._condition.notify_all()
            return self._limit

    async def _adjust_loop(self) -> None:
        """Background adjustment loop."""
        while self._running:
            try:
                await asyncio.sleep(self.bounds.adjust_interval)
                await self.adjust()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Concurrency adjustment error", error=str(e))

    async def start(self) -> None:
        """Start the background adjustment loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._adjust_loop())
        logger.debug("Concurrency controller started", limit=self._limit)

    async def stop(self) -> None:
        """Stop the background adjustment loop."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.debug("Concurrency controller stopped", limit=self._limit)

    def get_stats(self) -> dict[str, Any]:
        """Get controller statistics."""
        return {
            "limit": self._limit,
            "active": self._active,
            "pending_samples": len(self._samples),
            "adjustments": self._adjustments,
            "min_limit": self.bounds.min_limit,
            "max_limit": self.bounds.max_limit,
        }
