"""
Translate limiter decisions into response metadata.

Headers follow the IETF RateLimit header fields draft (RateLimit-Limit,
RateLimit-Remaining, RateLimit-Reset, RateLimit-Policy). Legacy
X-RateLimit-* headers are not emitted.
"""

from typing import Any, Dict

from .exceptions import RateLimitExceededError
from .limiter import Decision
from .policy import Policy


def rate_limit_headers(decision: Decision, window_seconds: float, now: float) -> Dict[str, str]:
    """
    Build quota headers for a decision.

    RateLimit-Reset is the number of seconds until the window resets.
    Retry-After is added only when the decision is a denial.
    """
    reset_in = decision.retry_after(now)
    headers = {
        "RateLimit-Limit": str(decision.limit),
        "RateLimit-Remaining": str(decision.remaining),
        "RateLimit-Reset": str(reset_in),
        "RateLimit-Policy": f"{decision.limit};w={int(window_seconds)}",
    }
    if not decision.allowed:
        headers["Retry-After"] = str(reset_in)
    return headers


def raise_for_decision(decision: Decision, policy: Policy, now: float) -> None:
    """Raise RateLimitExceededError if `decision` is a denial."""
    if decision.allowed:
        return

    raise RateLimitExceededError(
        policy.message,
        retry_after=decision.retry_after(now),
        limit=decision.limit,
        policy_name=policy.name,
        headers=rate_limit_headers(decision, policy.window_seconds, now)
    )


def rate_limit_error_body(exc: RateLimitExceededError) -> Dict[str, Any]:
    """JSON body for a 429 response."""
    return {
        "detail": exc.message,
        "error_code": exc.error_code,
    }
