"""Fetch infrastructure: HTTP clients, caching, deduplication, retry and rate limiting."""

from chainfolio.services.base import BaseAPIClient
from chainfolio.services.cache import CacheLookup, FreshnessCache
from chainfolio.services.dedup import RequestDeduplicator
from chainfolio.services.rate_limiter import SlidingWindowRateLimiter
from chainfolio.services.retry import RetryExecutor

__all__ = [
    "BaseAPIClient",
    "CacheLookup",
    "FreshnessCache",
    "RequestDeduplicator",
    "RetryExecutor",
    "SlidingWindowRateLimiter",
]
