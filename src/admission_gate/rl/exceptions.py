"""Rate limiting exceptions."""

from typing import Dict, Optional


class RateLimitError(Exception):
    """Base exception for rate limiting errors."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "rate_limit_error"


class RateLimitExceededError(RateLimitError):
    """
    Exception raised when a policy denies a request.

    Carries everything the HTTP layer needs to build a 429 response without
    the limiter knowing anything about HTTP: the policy message, the number
    of seconds until the window resets and the quota headers.
    """

    def __init__(
        self,
        message: str,
        retry_after: int,
        limit: int,
        policy_name: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        super().__init__(message, "rate_limit_exceeded")
        self.retry_after = retry_after
        self.limit = limit
        self.policy_name = policy_name
        self.headers = dict(headers or {})


class RateLimitConfigurationError(RateLimitError):
    """Exception raised when rate limiting configuration is invalid."""

    def __init__(self, message: str, config_field: Optional[str] = None, provided_value=None):
        super().__init__(message, "rate_limit_configuration_error")
        self.config_field = config_field
        self.provided_value = provided_value


class StoreUnavailableError(RateLimitError):
    """
    Exception raised when a window store backend cannot be reached.

    The limiter resolves it according to its configured store failure mode,
    so it never reaches the HTTP layer from ``RateLimiter.check``.
    """

    def __init__(self, message: str, backend_error: Optional[str] = None):
        super().__init__(message, "rate_limit_store_unavailable")
        self.backend_error = backend_error
