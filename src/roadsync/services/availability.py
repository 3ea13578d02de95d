"""
AvailabilityProber - decides which stores are currently usable.

Each target has a probe coroutine; its boolean answer is cached for a TTL
so ordinary writes do not pay a network round trip. A probe that fails or
times out means "unreachable" and never raises.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from .models import ProbeTarget

logger = logging.getLogger(__name__)

ProbeFunc = Callable[[], Awaitable[bool]]


@dataclass
class AvailabilityState:
    """Last probe result for one target."""

    reachable: bool
    checked_at: float

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.checked_at < ttl


class AvailabilityProber:
    """
    TTL-cached reachability checks.

    The clock is injectable so tests can move time forward deterministically.
    Concurrent callers on an expired entry share one probe: the first takes
    the per-target lock, the others find the refreshed state behind it.
    """

    def __init__(
        self,
        probes: Dict[ProbeTarget, ProbeFunc],
        ttl_seconds: float = 300.0,
        timeout_seconds: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
        overrides: Optional[Dict[ProbeTarget, bool]] = None,
    ):
        self._probes = dict(probes)
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._overrides = dict(overrides or {})
        self._states: Dict[ProbeTarget, AvailabilityState] = {}
        self._locks: Dict[ProbeTarget, asyncio.Lock] = {}

    def _lock_for(self, target: ProbeTarget) -> asyncio.Lock:
        if target not in self._locks:
            self._locks[target] = asyncio.Lock()
        return self._locks[target]

    async def is_reachable(self, target: ProbeTarget) -> bool:
        """Return the cached state if fresh, otherwise probe and cache."""
        if target in self._overrides:
            return self._overrides[target]

        state = self._states.get(target)
        if state and state.is_fresh(self._clock(), self.ttl_seconds):
            logger.debug(f"Availability cache hit: {target.value}={state.reachable}")
            return state.reachable

        async with self._lock_for(target):
            # Another caller may have refreshed while we waited
            state = self._states.get(target)
            if state and state.is_fresh(self._clock(), self.ttl_seconds):
                return state.reachable

            reachable = await self._probe(target)
            previous = state.reachable if state else None
            self._states[target] = AvailabilityState(reachable=reachable, checked_at=self._clock())

        if previous != reachable:
            status = "reachable" if reachable else "unreachable"
            logger.info(f"Target {target.value} is now {status}")
        return reachable

    async def _probe(self, target: ProbeTarget) -> bool:
        probe = self._probes.get(target)
        if probe is None:
            logger.warning(f"No probe registered for {target.value}, treating as unreachable")
            return False

        try:
            return bool(await asyncio.wait_for(probe(), timeout=self.timeout_seconds))
        except asyncio.TimeoutError:
            logger.warning(f"Probe for {target.value} timed out after {self.timeout_seconds}s")
            return False
        except Exception as e:
            logger.warning(f"Probe for {target.value} failed: {e}")
            return False

    def invalidate(self, target: Optional[ProbeTarget] = None) -> None:
        """Force the next call for target (or every target) to re-probe."""
        if target is None:
            self._states.clear()
            logger.debug("Availability cache cleared")
        else:
            self._states.pop(target, None)
            logger.debug(f"Availability cache invalidated: {target.value}")

    def set_override(self, target: ProbeTarget, reachable: Optional[bool]) -> None:
        """Pin a target's availability; None removes the pin."""
        if reachable is None:
            self._overrides.pop(target, None)
        else:
            self._overrides[target] = reachable
            logger.info(f"Availability of {target.value} pinned to {reachable}")

    def get_state(self, target: ProbeTarget) -> Optional[AvailabilityState]:
        return self._states.get(target)

    def snapshot(self) -> Dict[str, Any]:
        """Cached states for health reporting."""
        now = self._clock()
        return {
            target.value: {
                "reachable": state.reachable,
                "age_seconds": round(now - state.checked_at, 3),
                "fresh": state.is_fresh(now, self.ttl_seconds),
            }
            for target, state in self._states.items()
        }
