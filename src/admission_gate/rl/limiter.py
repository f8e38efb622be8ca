"""Rate limiter implementation."""

import hashlib
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .exceptions import StoreUnavailableError
from .keys import RequestContext
from .policy import CountingMode, Policy
from .store import WindowStore

logger = logging.getLogger(__name__)


class StoreFailureMode(Enum):
    """
    How a limiter resolves a window store fault.

    FAIL_OPEN: admit the request as if it were within quota.
    FAIL_CLOSED: deny the request.
    """
    FAIL_OPEN = "open"
    FAIL_CLOSED = "closed"


@dataclass(frozen=True)
class Decision:
    """Result of a single admission check."""
    allowed: bool
    remaining: int
    reset_at: float
    limit: int
    key: Optional[str] = None
    policy_name: Optional[str] = None
    bypassed: bool = False
    degraded: bool = False

    def retry_after(self, now: float) -> int:
        """Whole seconds until the window resets, never negative."""
        return max(0, int(math.ceil(self.reset_at - now)))


def hash_key(key: str) -> str:
    """Hash a rate limit key for logging without exposing identities."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


class RateLimiter:
    """
    Binds a policy to a window store and makes admission decisions.

    `check` never raises for normal operation: denial is reported through
    `Decision.allowed`. For FAILURES_ONLY policies `check` only reads the
    window; the caller reports the guarded operation's outcome through
    `record_outcome`, and only failures are counted.
    """

    def __init__(
        self,
        policy: Policy,
        store: WindowStore,
        *,
        on_store_failure: StoreFailureMode,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the rate limiter.

        Args:
            policy: Policy to enforce
            store: Window store shared with other limiters
            on_store_failure: Required; whether store faults fail open or closed
            clock: Time source returning UNIX time in seconds
        """
        if not isinstance(on_store_failure, StoreFailureMode):
            raise TypeError("on_store_failure must be a StoreFailureMode")

        self._policy = policy
        self._store = store
        self._on_store_failure = on_store_failure
        self._clock = clock

    def now(self) -> float:
        """Current time according to this limiter's clock."""
        return self._clock()

    @property
    def policy(self) -> Policy:
        return self._policy

    @property
    def store(self) -> WindowStore:
        return self._store

    @property
    def on_store_failure(self) -> StoreFailureMode:
        return self._on_store_failure

    def _store_key(self, key: str) -> str:
        # Namespaced so one store can back every policy
        return f"{self._policy.name}:{key}"

    def check(self, ctx: RequestContext) -> Decision:
        """
        Decide whether the request described by `ctx` is admitted.

        Bypassed requests are admitted without touching the store.
        """
        policy = self._policy
        now = self._clock()

        if policy.bypass(ctx):
            return Decision(
                allowed=True,
                remaining=policy.max_events,
                reset_at=now + policy.window_seconds,
                limit=policy.max_events,
                policy_name=policy.name,
                bypassed=True
            )

        key = policy.key_strategy(ctx)
        store_key = self._store_key(key)

        try:
            if policy.counting_mode is CountingMode.ALL_REQUESTS:
                count, window_start = self._store.increment(store_key, now, policy.window_seconds)
                allowed = count <= policy.max_events
            else:
                count, window_start = self._store.peek(store_key, now, policy.window_seconds)
                allowed = count < policy.max_events
        except StoreUnavailableError as e:
            return self._degraded_decision(key, now, e)

        decision = Decision(
            allowed=allowed,
            remaining=max(0, policy.max_events - count),
            reset_at=window_start + policy.window_seconds,
            limit=policy.max_events,
            key=key,
            policy_name=policy.name
        )

        if allowed:
            logger.debug(
                "Rate limit check passed",
                extra={
                    "policy": policy.name,
                    "key_hash": hash_key(key),
                    "remaining": decision.remaining
                }
            )
        else:
            logger.warning(
                "Rate limit exceeded",
                extra={
                    "policy": policy.name,
                    "key_hash": hash_key(key),
                    "limit": policy.max_events,
                    "retry_after": decision.retry_after(now)
                }
            )
        return decision

    def record_outcome(self, key: str, succeeded: bool) -> bool:
        """
        Report the outcome of an operation admitted by `check`.

        Only FAILURES_ONLY policies count here, and only failures. The
        increment is not rolled back if the caller later aborts.

        Args:
            key: Decision.key returned by `check`
            succeeded: Whether the guarded operation succeeded

        Returns:
            True if a failure was counted
        """
        policy = self._policy
        if policy.counting_mode is not CountingMode.FAILURES_ONLY or succeeded:
            return False

        try:
            count, _ = self._store.increment(self._store_key(key), self._clock(), policy.window_seconds)
        except StoreUnavailableError as e:
            logger.error(
                "Failed to record rate limit outcome",
                extra={"policy": policy.name, "key_hash": hash_key(key), "error": e.message}
            )
            return False

        logger.info(
            "Recorded failed attempt",
            extra={"policy": policy.name, "key_hash": hash_key(key), "count": count}
        )
        return True

    def reset(self, key: str) -> None:
        """Clear the window for `key` (manual override)."""
        self._store.reset(self._store_key(key))

    def _degraded_decision(self, key: str, now: float, error: StoreUnavailableError) -> Decision:
        """Resolve a store fault according to the configured failure mode."""
        policy = self._policy
        allowed = self._on_store_failure is StoreFailureMode.FAIL_OPEN

        logger.error(
            "Window store unavailable",
            extra={
                "policy": policy.name,
                "key_hash": hash_key(key),
                "failure_mode": self._on_store_failure.value,
                "error": error.message
            }
        )

        return Decision(
            allowed=allowed,
            remaining=policy.max_events if allowed else 0,
            reset_at=now + policy.window_seconds,
            limit=policy.max_events,
            key=key,
            policy_name=policy.name,
            degraded=True
        )
