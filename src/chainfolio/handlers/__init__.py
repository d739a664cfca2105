"""Chain and exchange handlers."""

from chainfolio.handlers.base import ChainHandler, HandlerConfig, RateLimitConfig
from chainfolio.handlers.registry import (
    HandlerRegistry,
    build_registry,
    get_registry,
    normalize_name,
)

__all__ = [
    "ChainHandler",
    "HandlerConfig",
    "HandlerRegistry",
    "RateLimitConfig",
    "build_registry",
    "get_registry",
    "normalize_name",
]
