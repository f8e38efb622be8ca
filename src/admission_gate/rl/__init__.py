"""Rate limiting module."""

from .keys import (
    RequestContext,
    UNKNOWN_ADDRESS,
    normalize_address,
    by_remote_address,
    by_authenticated_identity
)
from .store import WindowEntry, WindowStore, MemoryWindowStore
from .policy import (
    Policy,
    CountingMode,
    EnvironmentFlagBypass,
    never_bypass,
    any_bypass,
    GENERAL,
    AUTHENTICATION,
    METERED,
    UPLOAD,
    default_policies
)
from .limiter import Decision, RateLimiter, StoreFailureMode
from .reporter import rate_limit_headers, raise_for_decision, rate_limit_error_body
from .http import build_request_context, forwarded_client_address, report_outcome
from .middleware import RateLimitMiddleware, RouteBinding
from .dependencies import RateLimitGuard
from .config import (
    RateLimitConfig,
    get_rate_limit_config,
    create_window_store,
    create_rate_limiters,
    create_route_bindings
)
from .exceptions import (
    RateLimitError,
    RateLimitExceededError,
    RateLimitConfigurationError,
    StoreUnavailableError
)

__all__ = [
    "RequestContext",
    "UNKNOWN_ADDRESS",
    "normalize_address",
    "by_remote_address",
    "by_authenticated_identity",
    "WindowEntry",
    "WindowStore",
    "MemoryWindowStore",
    "Policy",
    "CountingMode",
    "EnvironmentFlagBypass",
    "never_bypass",
    "any_bypass",
    "GENERAL",
    "AUTHENTICATION",
    "METERED",
    "UPLOAD",
    "default_policies",
    "Decision",
    "RateLimiter",
    "StoreFailureMode",
    "rate_limit_headers",
    "raise_for_decision",
    "rate_limit_error_body",
    "build_request_context",
    "forwarded_client_address",
    "report_outcome",
    "RateLimitMiddleware",
    "RouteBinding",
    "RateLimitGuard",
    "RateLimitConfig",
    "get_rate_limit_config",
    "create_window_store",
    "create_rate_limiters",
    "create_route_bindings",
    "RateLimitError",
    "RateLimitExceededError",
    "RateLimitConfigurationError",
    "StoreUnavailableError"
]
