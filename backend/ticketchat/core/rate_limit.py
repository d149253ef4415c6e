"""
Per-service call spacing for outbound vendor calls.

Before each call to a service (an LLM provider, the ticket API) the caller
awaits ``RateLimiter.wait(service_key, min_interval)``. If the previous call
to that service started less than ``min_interval`` seconds ago, the call
sleeps for the remainder. The timestamp is recorded after the wait and before
the call is issued.

State is in-memory and local to one process. Several worker processes each
keep their own spacing, so the effective global rate is only approximated.
The limiter is constructed once at startup and passed to the components that
need it; there is no module-level instance.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from ticketchat.core.logging import get_logger
from ticketchat.core.metrics import record_rate_limit_wait

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateConfig:
    """Spacing configuration for one service."""

    service_key: str
    min_interval_seconds: float = 0.0

    @classmethod
    def from_delay_ms(cls, service_key: str, call_delay_ms: Optional[int]) -> "RateConfig":
        return cls(service_key=service_key, min_interval_seconds=max(0, call_delay_ms or 0) / 1000.0)


class RateLimiter:
    """Last-call timestamps keyed by service identifier."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self._last_call: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, service_key: str) -> asyncio.Lock:
        lock = self._locks.get(service_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[service_key] = lock
        return lock

    def last_call(self, service_key: str) -> Optional[float]:
        return self._last_call.get(service_key)

    async def wait(self, service_key: str, min_interval_seconds: float) -> float:
        """
        Wait until a call to ``service_key`` is allowed, then claim the slot.

        Returns:
            Seconds spent sleeping (0.0 when no wait was needed).
        """
        async with self._lock_for(service_key):
            waited = 0.0
            last = self._last_call.get(service_key)
            if last is not None and min_interval_seconds > 0:
                elapsed = self._clock() - last
                if elapsed < min_interval_seconds:
                    waited = min_interval_seconds - elapsed
                    logger.debug(
                        "rate_limit_wait",
                        service_key=service_key,
                        wait_seconds=round(waited, 3),
                    )
                    await self._sleep(waited)
            self._last_call[service_key] = self._clock()

        if waited > 0:
            record_rate_limit_wait(service_key, waited)
        return waited

    async def throttle(self, config: Optional[RateConfig]) -> float:
        """Convenience wrapper accepting an optional ``RateConfig``."""
        if config is None:
            return 0.0
        return await self.wait(config.service_key, config.min_interval_seconds)
