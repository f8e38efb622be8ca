"""
Rate limiting policies.

A policy is one named, immutable rate limit configuration: how long a window
lasts, how many events it admits, which events count, how the key is derived
and when a request skips limiting entirely.

The product runs four policies:

    general         150 requests / 15 min per IP
    authentication   10 failed attempts / 15 min per IP
    metered          20 generation calls / 60 min per user (IP if anonymous)
    upload           15 uploads / 15 min per IP
"""

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict

from .exceptions import RateLimitConfigurationError
from .keys import KeyStrategy, RequestContext, by_authenticated_identity, by_remote_address

BypassPredicate = Callable[[RequestContext], bool]

_TRUTHY = {"1", "true", "yes", "on"}


class CountingMode(Enum):
    """
    Which events consume quota.

    ALL_REQUESTS: every checked request counts.
    FAILURES_ONLY: only outcomes reported as failed count (e.g. failed logins).
    """
    ALL_REQUESTS = "all_requests"
    FAILURES_ONLY = "failures_only"


def never_bypass(ctx: RequestContext) -> bool:
    """Default predicate: nothing skips limiting."""
    return False


class EnvironmentFlagBypass:
    """
    Bypass predicate driven by an environment variable.

    The variable is read on every call, never cached, so the flag can be
    flipped at runtime (and in tests) without rebuilding limiters.
    """

    def __init__(self, variable: str = "SKIP_RATE_LIMIT"):
        self.variable = variable

    def __call__(self, ctx: RequestContext) -> bool:
        return os.environ.get(self.variable, "").strip().lower() in _TRUTHY

    def __repr__(self) -> str:
        return f"EnvironmentFlagBypass({self.variable!r})"


def any_bypass(*predicates: BypassPredicate) -> BypassPredicate:
    """Combine predicates; the request bypasses if any of them says so."""
    def _any(ctx: RequestContext) -> bool:
        return any(predicate(ctx) for predicate in predicates)
    return _any


@dataclass(frozen=True)
class Policy:
    """Immutable rate limit policy."""
    name: str
    window_seconds: float
    max_events: int
    counting_mode: CountingMode = CountingMode.ALL_REQUESTS
    key_strategy: KeyStrategy = field(default=by_remote_address, compare=False)
    bypass: BypassPredicate = field(default=never_bypass, compare=False)
    message: str = "Too many requests, please try again later."

    def __post_init__(self):
        if not self.name:
            raise RateLimitConfigurationError(
                "policy name must not be empty",
                config_field="name",
                provided_value=self.name
            )
        if self.max_events < 1:
            raise RateLimitConfigurationError(
                "max_events must be >= 1",
                config_field="max_events",
                provided_value=self.max_events
            )
        if self.window_seconds <= 0:
            raise RateLimitConfigurationError(
                "window_seconds must be > 0",
                config_field="window_seconds",
                provided_value=self.window_seconds
            )

    def with_bypass(self, bypass: BypassPredicate) -> "Policy":
        """Return a copy of this policy using `bypass`."""
        return replace(self, bypass=bypass)


GENERAL = Policy(
    name="general",
    window_seconds=15 * 60,
    max_events=150,
    counting_mode=CountingMode.ALL_REQUESTS,
    key_strategy=by_remote_address,
    message="Too many requests from this IP, please try again later.",
)

AUTHENTICATION = Policy(
    name="authentication",
    window_seconds=15 * 60,
    max_events=10,
    counting_mode=CountingMode.FAILURES_ONLY,
    key_strategy=by_remote_address,
    message="Too many authentication attempts, please try again later.",
)

METERED = Policy(
    name="metered",
    window_seconds=60 * 60,
    max_events=20,
    counting_mode=CountingMode.ALL_REQUESTS,
    key_strategy=by_authenticated_identity,
    message="Too many generation requests, please try again later.",
)

UPLOAD = Policy(
    name="upload",
    window_seconds=15 * 60,
    max_events=15,
    counting_mode=CountingMode.ALL_REQUESTS,
    key_strategy=by_remote_address,
    message="Too many upload requests, please try again later.",
)

DEFAULT_POLICIES = (GENERAL, AUTHENTICATION, METERED, UPLOAD)


def default_policies(bypass: BypassPredicate = never_bypass) -> Dict[str, Policy]:
    """Return the four product policies keyed by name, all sharing `bypass`."""
    return {policy.name: policy.with_bypass(bypass) for policy in DEFAULT_POLICIES}
