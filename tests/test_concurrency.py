"""
Tests for AdaptiveConcurrencyController.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|----------------------|--------------------------------------|-----------------|-------|
| TC-CC-01 | Slow mean latency | Equivalence – decrease | limit - step | - |
| TC-CC-02 | Fast mean latency | Equivalence – increase | limit + step | - |
| TC-CC-03 | No samples | Boundary – hold | Unchanged | - |
| TC-CC-04 | Random latency sequences | Invariant – bounds | min <= limit <= max | seeded |
| TC-CC-05 | active == limit | Equivalence – blocking | acquire waits for release | - |
| TC-CC-06 | Exception inside slot | Abnormal – release | Slot returned | - |
| TC-CC-07 | Cancellation inside slot | Abnormal – release | Slot returned | - |
| TC-CC-08 | Limit raised while waiting | Equivalence – wake-up | Waiter proceeds | - |
| TC-CC-09 | start()/stop() loop | Equivalence – background | Limit adjusted | - |
| TC-CC-10 | Invalid bounds | Abnormal – config | ValueError / clamped | - |
"""

import asyncio
import random

import pytest

from panlink.scheduler.concurrency import AdaptiveConcurrencyController, LimiterBounds


def _controller(**kwargs) -> AdaptiveConcurrencyController:
    params = {
        "min_limit": 2,
        "max_limit": 10,
        "initial": 6,
        "step": 2,
        "latency_threshold": 1.0,
        "adjust_interval": 60.0,
    }
    params.update(kwargs)
    return AdaptiveConcurrencyController(LimiterBounds(**params))


class TestAdjust:
    """Tests for adjust()."""

    # =========================================================================
    # TC-CC-01 / TC-CC-02 / TC-CC-03
    # =========================================================================
    @pytest.mark.asyncio
    async def test_slow_latency_decreases(self) -> None:
        """Test limit decrease when the mean exceeds the threshold."""
        controller = _controller()
        controller.record_latency(1.5)
        controller.record_latency(2.5)

        assert await controller.adjust() == 4

    @pytest.mark.asyncio
    async def test_fast_latency_increases(self) -> None:
        """Test limit increase when the mean is at or below the threshold."""
        controller = _controller()
        controller.record_latency(0.2)
        controller.record_latency(1.0)

        assert await controller.adjust() == 8

    @pytest.mark.asyncio
    async def test_no_samples_holds(self) -> None:
        """Test that an idle interval leaves the limit alone."""
        controller = _controller()

        assert await controller.adjust() == 6
        assert controller.get_stats()["adjustments"] == 0

    @pytest.mark.asyncio
    async def test_samples_consumed_per_interval(self) -> None:
        """Test that each adjustment only sees samples since the last one."""
        controller = _controller()
        controller.record_latency(5.0)
        await controller.adjust()

        assert await controller.adjust() == 4
        assert controller.get_stats()["pending_samples"] == 0

    @pytest.mark.asyncio
    async def test_clamped_at_bounds(self) -> None:
        """Test floor and cap."""
        controller = _controller(initial=3)
        controller.record_latency(9.0)
        assert await controller.adjust() == 2
        controller.record_latency(9.0)
        assert await controller.adjust() == 2

        controller = _controller(initial=9)
        controller.record_latency(0.1)
        assert await controller.adjust() == 10

    # =========================================================================
    # TC-CC-04: Bounds invariant
    # =========================================================================
    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
    async def test_limit_stays_within_bounds(self, seed: int) -> None:
        """Test min <= limit <= max over random latency histories.

        Given: A seeded random sequence of intervals with 0-5 samples each
        When: adjust() runs after every interval
        Then: The limit never leaves [min_limit, max_limit]
        """
        rng = random.Random(seed)
        controller = _controller(min_limit=1, max_limit=7, initial=4, step=3)

        for _ in range(200):
            for _ in range(rng.randint(0, 5)):
                controller.record_latency(rng.uniform(0.0, 2.0))
            limit = await controller.adjust()
            assert 1 <= limit <= 7


class TestSlots:
    """Tests for acquire/release and slot()."""

    # =========================================================================
    # TC-CC-05: Blocking
    # =========================================================================
    @pytest.mark.asyncio
    async def test_acquire_blocks_at_limit(self) -> None:
        """Test that acquisition waits while active == limit.

        Given: limit=1 with one slot taken
        When: A second acquire() is started
        Then: It waits until the first slot is released
        """
        # Given
        controller = _controller(min_limit=1, max_limit=1, initial=1)
        await controller.acquire()

        # When
        waiter = asyncio.create_task(controller.acquire())
        await asyncio.sleep(0.01)

        # Then
        assert not waiter.done()
        assert controller.active == 1

        await controller.release(0.1)
        await asyncio.wait_for(waiter, timeout=1.0)
        assert controller.active == 1

    @pytest.mark.asyncio
    async def test_active_never_exceeds_limit(self) -> None:
        """Test the in-flight count under many concurrent tasks."""
        controller = _controller(min_limit=3, max_limit=3, initial=3)
        peak = 0

        async def task() -> None:
            nonlocal peak
            async with controller.slot():
                peak = max(peak, controller.active)
                await asyncio.sleep(0.005)

        await asyncio.gather(*(task() for _ in range(20)))

        assert peak == 3
        assert controller.active == 0
        assert controller.get_stats()["pending_samples"] == 20

    # =========================================================================
    # TC-CC-06: Exception
    # =========================================================================
    @pytest.mark.asyncio
    async def test_slot_released_on_exception(self) -> None:
        """Test release when the block raises."""
        controller = _controller()

        with pytest.raises(RuntimeError):
            async with controller.slot():
                assert controller.active == 1
                raise RuntimeError("boom")

        assert controller.active == 0

    # =========================================================================
    # TC-CC-07: Cancellation
    # =========================================================================
    @pytest.mark.asyncio
    async def test_slot_released_on_cancellation(self) -> None:
        """Test release when the holding task is cancelled.

        Given: A task holding a slot and waiting forever
        When: The task is cancelled
        Then: active drops back to 0
        """
        # Given
        controller = _controller()
        entered = asyncio.Event()

        async def hold() -> None:
            async with controller.slot():
                entered.set()
                await asyncio.Event().wait()

        task = asyncio.create_task(hold())
        await entered.wait()
        assert controller.active == 1

        # When
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        # Then
        assert controller.active == 0

    # =========================================================================
    # TC-CC-08: Wake-up on increase
    # =========================================================================
    @pytest.mark.asyncio
    async def test_increase_wakes_waiters(self) -> None:
        """Test that raising the limit lets a waiter through."""
        controller = _controller(min_limit=1, max_limit=3, initial=1, step=1)
        await controller.acquire()
        waiter = asyncio.create_task(controller.acquire())
        await asyncio.sleep(0.01)
        assert not waiter.done()

        controller.record_latency(0.1)
        await controller.adjust()

        await asyncio.wait_for(waiter, timeout=1.0)
        assert controller.active == 2


class TestLifecycle:
    """Tests for the background loop and bounds validation."""

    # =========================================================================
    # TC-CC-09: Background loop
    # =========================================================================
    @pytest.mark.asyncio
    async def test_background_adjustment(self) -> None:
        """Test periodic adjustment between start() and stop()."""
        controller = _controller(adjust_interval=0.01)
        controller.record_latency(0.1)

        await controller.start()
        await asyncio.sleep(0.05)
        await controller.stop()

        assert controller.limit == 8
        assert controller._task is None

    def test_defaults_from_settings(self) -> None:
        """Test bounds taken from config/settings.yaml."""
        controller = AdaptiveConcurrencyController()

        assert controller.limit == 10
        assert controller.bounds.min_limit == 2
        assert controller.bounds.max_limit == 20

    # =========================================================================
    # TC-CC-10: Invalid bounds
    # =========================================================================
    def test_invalid_bounds(self) -> None:
        with pytest.raises(ValueError):
            LimiterBounds(min_limit=5, max_limit=2)
        with pytest.raises(ValueError):
            LimiterBounds(min_limit=0)

    def test_initial_clamped(self) -> None:
        assert LimiterBounds(min_limit=2, max_limit=4, initial=9).initial == 4
