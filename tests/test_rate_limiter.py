"""Tests for per-host request pacing."""

from pricewatch.scrapers.utils.rate_limiter import DomainRateLimiter, TokenBucket


class TestTokenBucket:
    """Tests for TokenBucket."""

    async def test_starts_full(self):
        bucket = TokenBucket(rate=1.0, capacity=3)

        for _ in range(3):
            await bucket.acquire()

        assert bucket.tokens < 1

    async def test_never_exceeds_capacity(self):
        bucket = TokenBucket(rate=1000.0, capacity=2)
        bucket.last_refill -= 60
        await bucket.acquire()
        assert bucket.tokens <= 2


class TestDomainRateLimiter:
    """Tests for DomainRateLimiter."""

    def test_storefront_limits_apply_to_subdomains(self):
        limiter = DomainRateLimiter(default_rpm=60)
        assert limiter.limit_for("www.amazon.co.uk") == 20
        assert limiter.limit_for("www.jumia.com.eg") == 30
        assert limiter.limit_for("shop.example.com") == 60

    async def test_buckets_are_per_host(self):
        limiter = DomainRateLimiter(default_rpm=60)
        await limiter.acquire("WWW.AMAZON.COM")
        await limiter.acquire("www.jumia.com.eg")
        assert set(limiter._buckets) == {"www.amazon.com", "www.jumia.com.eg"}
