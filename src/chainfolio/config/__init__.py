"""Configuration module for Chainfolio.

Usage:
    from chainfolio.config import get_settings

    settings = get_settings()  # Cached singleton
    print(settings.app_name)

Note:
    Use `get_settings()` to get the cached instance at runtime, and
    `get_settings.cache_clear()` in tests after patching the environment.
"""

from chainfolio.config.logging import configure_logging, get_logger
from chainfolio.config.settings import Settings, get_settings

__all__ = ["Settings", "configure_logging", "get_logger", "get_settings"]
