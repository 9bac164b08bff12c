"""Per-tenant pacing of calls to an external API."""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict

from locallift.main.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class TenantRateLimiter:
    """Enforces a minimum spacing between consecutive calls for the same key.

    Each key gets its own ``asyncio.Lock`` so concurrent callers for one tenant
    queue up behind each other while different tenants never block one
    another. The spacing is ``min_interval_seconds`` plus a random jitter in
    ``[0, jitter_seconds]``, sampled per call.

    ``penalize`` pushes a key's next slot further out, which is how the
    executor applies a cooldown after a failed call.

    Keys are never evicted. A warning is logged once when the number of
    tracked keys crosses ``warn_threshold``.
    """

    min_interval_seconds: float
    jitter_seconds: float = 0.0
    warn_threshold: int = 10_000
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    jitter: Callable[[float, float], float] = random.uniform
    _next_allowed: Dict[str, float] = field(init=False, default_factory=dict, repr=False)
    _locks: Dict[str, asyncio.Lock] = field(init=False, default_factory=dict, repr=False)
    _warned: bool = field(init=False, default=False, repr=False)

    async def wait(self, tenant_key: str) -> None:
        """Return once a call for ``tenant_key`` is allowed. Never raises."""
        lock = self._locks.get(tenant_key)
        if lock is None:
            lock = self._locks[tenant_key] = asyncio.Lock()
            self._check_size()

        async with lock:
            next_allowed = self._next_allowed.get(tenant_key)
            if next_allowed is not None:
                delay = next_allowed - self.clock()
                if delay > 0:
                    logger.debug(
                        "Rate limiter delaying call",
                        extra={"tenant_id": tenant_key, "delay_seconds": round(delay, 3)},
                    )
                    await self.sleep(delay)

            spacing = self.min_interval_seconds
            if self.jitter_seconds > 0:
                spacing += self.jitter(0, self.jitter_seconds)
            self._next_allowed[tenant_key] = self.clock() + spacing

    def penalize(self, tenant_key: str, seconds: float) -> None:
        if seconds <= 0:
            return
        cooldown_until = self.clock() + seconds
        current = self._next_allowed.get(tenant_key, 0.0)
        self._next_allowed[tenant_key] = max(current, cooldown_until)

    @property
    def tracked_keys(self) -> int:
        return len(self._locks)

    def _check_size(self) -> None:
        if self._warned or len(self._locks) <= self.warn_threshold:
            return
        self._warned = True
        logger.warning(
            "Rate limiter is tracking an unusually large number of tenants",
            extra={"tracked_keys": len(self._locks), "threshold": self.warn_threshold},
        )
