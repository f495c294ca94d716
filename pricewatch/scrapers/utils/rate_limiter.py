"""Token bucket rate limiter for per-host request pacing."""

import asyncio
import time
from typing import Dict, Optional

from pricewatch.config import settings


class TokenBucket:
    """Token bucket: starts full, refills at a constant rate, one token per request."""

    def __init__(self, rate: float, capacity: float):
        """Initialize token bucket.

        Args:
            rate: Tokens per second (1.0 = 60 RPM)
            capacity: Burst size
        """
        self.rate = rate
        self.capacity = capacity
        self.tokens = capacity
        self.last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        self.tokens = min(self.capacity, self.tokens + (now - self.last_refill) * self.rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Take ``tokens`` from the bucket, sleeping until they are available."""
        async with self._lock:
            while True:
                self._refill()
                if self.tokens >= tokens:
                    self.tokens -= tokens
                    return
                await asyncio.sleep((tokens - self.tokens) / self.rate)


class DomainRateLimiter:
    """Per-host rate limiter; each host gets its own bucket.

    Hosts are matched by suffix against HOST_LIMITS_RPM so that every
    Amazon or Jumia storefront subdomain shares its storefront's limit.
    """

    HOST_LIMITS_RPM = {
        "amazon.com": 20,
        "amazon.co.uk": 20,
        "amazon.de": 20,
        "amazon.fr": 20,
        "amazon.ca": 20,
        "amazon.eg": 20,
        "jumia.com.eg": 30,
        "jumia.com": 30,
        "jumia.co.ke": 30,
        "jumia.com.ng": 30,
    }

    def __init__(self, default_rpm: Optional[int] = None):
        self.default_rpm = default_rpm or settings.SCRAPING_REQUESTS_PER_MINUTE
        self._buckets: Dict[str, TokenBucket] = {}

    def limit_for(self, host: str) -> int:
        """Requests per minute for ``host``."""
        for domain, rpm in self.HOST_LIMITS_RPM.items():
            if host == domain or host.endswith("." + domain):
                return rpm
        return self.default_rpm

    def _get_bucket(self, host: str) -> TokenBucket:
        if host not in self._buckets:
            rpm = self.limit_for(host)
            # Burst of 10% of RPM, at least 2
            self._buckets[host] = TokenBucket(rate=rpm / 60.0, capacity=max(2.0, rpm / 10.0))
        return self._buckets[host]

    async def acquire(self, host: str, tokens: float = 1.0) -> None:
        """Wait until a request to ``host`` is allowed."""
        await self._get_bucket(host.lower()).acquire(tokens)
