"""
Tests for AvailabilityProber.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from roadsync.services.availability import AvailabilityProber, AvailabilityState
from roadsync.services.models import ProbeTarget


class TestAvailabilityState:
    def test_is_fresh(self):
        state = AvailabilityState(reachable=True, checked_at=100.0)

        assert state.is_fresh(now=399.0, ttl=300.0)
        assert not state.is_fresh(now=400.0, ttl=300.0)


class TestAvailabilityProber:
    """TTL cache, timeouts, invalidation and overrides."""

    @pytest.fixture
    def backend_probe(self):
        return AsyncMock(return_value=True)

    @pytest.fixture
    def prober(self, backend_probe, fake_clock):
        return AvailabilityProber(
            {ProbeTarget.BACKEND: backend_probe},
            ttl_seconds=300.0,
            timeout_seconds=0.05,
            clock=fake_clock,
        )

    async def test_cached_within_ttl(self, prober, backend_probe, fake_clock):
        """Test a fresh result is served without probing again."""
        assert await prober.is_reachable(ProbeTarget.BACKEND) is True
        fake_clock.advance(299)
        assert await prober.is_reachable(ProbeTarget.BACKEND) is True

        assert backend_probe.await_count == 1

    async def test_reprobes_after_ttl(self, prober, backend_probe, fake_clock):
        """Test an expired entry triggers a new probe and caches the new answer."""
        await prober.is_reachable(ProbeTarget.BACKEND)
        backend_probe.return_value = False
        fake_clock.advance(300)

        assert await prober.is_reachable(ProbeTarget.BACKEND) is False
        assert backend_probe.await_count == 2
        assert prober.get_state(ProbeTarget.BACKEND).checked_at == fake_clock.now

    async def test_invalidate_forces_reprobe(self, prober, backend_probe):
        await prober.is_reachable(ProbeTarget.BACKEND)
        prober.invalidate(ProbeTarget.BACKEND)
        await prober.is_reachable(ProbeTarget.BACKEND)

        assert backend_probe.await_count == 2

    async def test_invalidate_all(self, prober):
        await prober.is_reachable(ProbeTarget.BACKEND)
        prober.invalidate()

        assert prober.get_state(ProbeTarget.BACKEND) is None

    async def test_timeout_means_unreachable(self, fake_clock):
        """Test a probe exceeding the timeout returns False instead of raising."""

        async def slow_probe() -> bool:
            await asyncio.sleep(1)
            return True

        prober = AvailabilityProber(
            {ProbeTarget.CLOUD: slow_probe}, timeout_seconds=0.01, clock=fake_clock
        )

        assert await prober.is_reachable(ProbeTarget.CLOUD) is False
        assert prober.get_state(ProbeTarget.CLOUD).reachable is False

    async def test_probe_exception_means_unreachable(self, fake_clock):
        probe = AsyncMock(side_effect=ConnectionError("refused"))
        prober = AvailabilityProber({ProbeTarget.BACKEND: probe}, clock=fake_clock)

        assert await prober.is_reachable(ProbeTarget.BACKEND) is False

    async def test_missing_probe_means_unreachable(self, prober):
        assert await prober.is_reachable(ProbeTarget.CLOUD) is False

    async def test_override_short_circuits_probe(self, prober, backend_probe):
        """Test pinned availability never probes."""
        prober.set_override(ProbeTarget.BACKEND, False)
        assert await prober.is_reachable(ProbeTarget.BACKEND) is False
        assert backend_probe.await_count == 0

        prober.set_override(ProbeTarget.BACKEND, None)
        assert await prober.is_reachable(ProbeTarget.BACKEND) is True
        assert backend_probe.await_count == 1

    async def test_overrides_from_constructor(self, fake_clock):
        prober = AvailabilityProber({}, clock=fake_clock, overrides={ProbeTarget.CLOUD: True})

        assert await prober.is_reachable(ProbeTarget.CLOUD) is True

    async def test_concurrent_callers_share_one_probe(self, fake_clock):
        """Test concurrent callers on an empty cache trigger a single probe."""
        calls = 0

        async def probe() -> bool:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return True

        prober = AvailabilityProber({ProbeTarget.BACKEND: probe}, clock=fake_clock)
        results = await asyncio.gather(
            *(prober.is_reachable(ProbeTarget.BACKEND) for _ in range(5))
        )

        assert results == [True] * 5
        assert calls == 1

    async def test_snapshot(self, prober, fake_clock):
        await prober.is_reachable(ProbeTarget.BACKEND)
        fake_clock.advance(10)

        snapshot = prober.snapshot()

        assert snapshot["backend"] == {"reachable": True, "age_seconds": 10.0, "fresh": True}
