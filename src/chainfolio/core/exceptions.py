"""Chainfolio exception hierarchy.

This module defines the base exception class and the specialized exceptions
raised while fetching balances and prices from chains and exchanges.
"""


class ChainfolioError(Exception):
    """Base exception for all Chainfolio errors.

    All custom exceptions in Chainfolio should inherit from this class
    to enable consistent error handling and logging.
    """

    pass


class ConfigurationError(ChainfolioError):
    """Raised when configuration is invalid.

    Use this for malformed environment variables, settings files,
    or handler configuration values.

    Example:
        raise ConfigurationError("Unknown handler name: 'kraken2'")
    """

    pass


class NotConfiguredError(ConfigurationError):
    """Raised when a required credential or endpoint is absent.

    Retrying cannot fix missing configuration, so the retry executor
    propagates this error immediately.

    Attributes:
        service: Name of the service that needs the setting.
        setting: Name of the missing setting.

    Example:
        raise NotConfiguredError(service="simplehash", setting="SIMPLEHASH_API_KEY")
    """

    def __init__(self, service: str, setting: str) -> None:
        self.service = service
        self.setting = setting
        super().__init__(f"{service}: {setting} is not configured")


class ValidationError(ChainfolioError):
    """Raised when data validation fails.

    Example:
        raise ValidationError("Token symbol must not be empty")
    """

    pass


class FetchError(ChainfolioError):
    """Base class for failures while talking to an upstream API."""

    pass


class RateLimitedError(FetchError):
    """Raised when the rate limiter keeps denying admission.

    Attributes:
        endpoint: Handler or endpoint identity that was throttled.
    """

    def __init__(self, endpoint: str, message: str = "rate limit admission denied") -> None:
        self.endpoint = endpoint
        super().__init__(f"{endpoint}: {message}")


class FetchTimeoutError(FetchError):
    """Raised when an operation does not complete within its timeout.

    Attributes:
        endpoint: Handler or endpoint identity that timed out.
        timeout: Timeout in seconds that was exceeded.
    """

    def __init__(self, endpoint: str, timeout: float) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        super().__init__(f"{endpoint}: timed out after {timeout:.1f}s")


class UpstreamError(FetchError):
    """Raised when an upstream call fails.

    Covers network failures, non-2xx responses and malformed payloads.

    Attributes:
        service: Name of the upstream service that failed.
        status_code: HTTP status code if available, None otherwise.

    Example:
        raise UpstreamError(service="kraken", message="EAPI:Invalid key", status_code=403)
    """

    def __init__(
        self,
        service: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service}: {message}")


class RetryExhaustedError(FetchError):
    """Raised when every retry attempt has failed.

    Attributes:
        endpoint: Handler or endpoint identity, for logging.
        attempts: Total number of attempts made.
        last_error: The error raised by the final attempt.
    """

    def __init__(self, endpoint: str, attempts: int, last_error: Exception) -> None:
        self.endpoint = endpoint
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{endpoint}: failed after {attempts} attempts: {last_error}")
