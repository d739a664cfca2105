"""Handler orchestration constants."""

from typing import Final

# Cache settings
HANDLER_TTL_SECONDS: Final[float] = 900.0  # 15 minutes
HANDLER_STALE_WINDOW_SECONDS: Final[float] = 450.0
BALANCE_CACHE_MAX_ITEMS: Final[int] = 1000
PRICE_CACHE_MAX_ITEMS: Final[int] = 500

# Retry settings
MAX_RETRIES: Final[int] = 3
RETRY_BASE_DELAY_SECONDS: Final[float] = 2.0
REQUEST_TIMEOUT_SECONDS: Final[float] = 30.0

# Rate limiting
RATE_LIMIT_MAX_REQUESTS: Final[int] = 30
RATE_LIMIT_WINDOW_SECONDS: Final[float] = 60.0
RATE_LIMIT_FALLBACK_POLL_SECONDS: Final[float] = 6.0

# Cache keys
PRICES_CACHE_KEY: Final[str] = "prices"
BALANCES_KEY_PREFIX: Final[str] = "balances:"
