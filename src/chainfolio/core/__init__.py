"""Core exceptions."""

from chainfolio.core.exceptions import (
    ChainfolioError,
    ConfigurationError,
    FetchError,
    FetchTimeoutError,
    NotConfiguredError,
    RateLimitedError,
    RetryExhaustedError,
    UpstreamError,
    ValidationError,
)

__all__ = [
    "ChainfolioError",
    "ConfigurationError",
    "FetchError",
    "FetchTimeoutError",
    "NotConfiguredError",
    "RateLimitedError",
    "RetryExhaustedError",
    "UpstreamError",
    "ValidationError",
]
