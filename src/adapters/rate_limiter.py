"""Token bucket asíncrono por familia de API.

Por qué por familia:
- La API de integraciones tolera 6 req/s y la de conectores 1 req/s.
- Las APIs auxiliares (OAuth, tokeninfo, metadata) no se limitan.

Todos los workers de un proceso comparten el mismo bucket de cada familia;
ninguno puede saltarse la espera.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Callable

from core.config import AppSettings


class ApiFamily(str, Enum):
    INTEGRATIONS = "integrations"
    CONNECTORS = "connectors"
    NONE = "none"


class TokenBucket:
    """Bucket de capacidad `rate` que se rellena a `rate` tokens por segundo."""

    def __init__(
        self,
        rate: float,
        *,
        capacity: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = float(rate)
        self.capacity = float(capacity if capacity is not None else rate)
        self._clock = clock
        self._tokens = self.capacity
        self._updated = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._updated = now

    async def acquire(self) -> None:
        # El lock serializa a los que esperan: el orden de llegada se respeta.
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                await asyncio.sleep((1.0 - self._tokens) / self.rate)


class RateLimiterRegistry:
    """Un bucket por familia; `NONE` nunca espera."""

    def __init__(self, rates: dict[ApiFamily, float]) -> None:
        self._buckets = {family: TokenBucket(rate) for family, rate in rates.items()}

    @classmethod
    def from_settings(cls, settings: AppSettings) -> RateLimiterRegistry:
        return cls(
            {
                ApiFamily.INTEGRATIONS: settings.integrations_rate_per_second,
                ApiFamily.CONNECTORS: settings.connectors_rate_per_second,
            }
        )

    def bucket(self, family: ApiFamily) -> TokenBucket | None:
        return self._buckets.get(family)

    async def wait(self, family: ApiFamily) -> None:
        bucket = self._buckets.get(family)
        if bucket is not None:
            await bucket.acquire()
