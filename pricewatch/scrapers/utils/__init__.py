"""Scraper utilities for proxies, rate limiting, and data normalization."""

from .rate_limiter import DomainRateLimiter, TokenBucket
from .proxy_client import ProxyCache, ProxyClient, ProxyInfo, ProxyServiceStatus
from .user_agents import get_random_user_agent, USER_AGENTS
from .normalizer import (
    PriceNormalizer,
    CategoryClassifier,
    CURRENCY_SYMBOLS,
    detect_currency,
    parse_count,
    parse_rating,
)


__all__ = [
    # Rate limiting
    "DomainRateLimiter",
    "TokenBucket",
    # Proxy pool
    "ProxyCache",
    "ProxyClient",
    "ProxyInfo",
    "ProxyServiceStatus",
    # User agents
    "get_random_user_agent",
    "USER_AGENTS",
    # Normalization
    "PriceNormalizer",
    "CategoryClassifier",
    "CURRENCY_SYMBOLS",
    "detect_currency",
    "parse_count",
    "parse_rating",
]
