"""Rate limiting middleware for FastAPI."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import RateLimitExceededError
from .http import build_request_context, register_pending_outcome
from .limiter import RateLimiter
from .policy import CountingMode
from .reporter import raise_for_decision, rate_limit_error_body, rate_limit_headers

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteBinding:
    """
    Attach a limiter to a set of path prefixes.

    A prefix matches the path itself and anything below it, so "/generation"
    covers "/generation/daily" but not "/generations". `path_prefixes=None`
    applies the limiter to every path.
    """
    limiter: RateLimiter
    path_prefixes: Optional[Tuple[str, ...]] = None

    def matches(self, path: str) -> bool:
        if self.path_prefixes is None:
            return True
        for prefix in self.path_prefixes:
            base = prefix.rstrip("/")
            if not base or path == base or path.startswith(base + "/"):
                return True
        return False


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Middleware to enforce rate limits on bound paths.

    Every binding whose prefixes match the request path is checked in order.
    The first denial short-circuits with a 429 response and the guarded
    handler is never invoked. When all limiters admit the request, the quota
    headers of the tightest decision (fewest remaining) are attached to the
    response.
    """

    def __init__(
        self,
        app,
        bindings: Sequence[RouteBinding] = (),
        trust_forwarded_for: bool = False,
        trusted_hops: int = 1
    ):
        """Initialize rate limiting middleware."""
        super().__init__(app)
        self.bindings = tuple(bindings)
        self.trust_forwarded_for = trust_forwarded_for
        self.trusted_hops = trusted_hops

        if not self.bindings:
            logger.info("Rate limiting middleware initialized but disabled (no bindings)")
        else:
            logger.info(
                "Rate limiting middleware initialized",
                extra={
                    "policies": [b.limiter.policy.name for b in self.bindings],
                    "trust_forwarded_for": self.trust_forwarded_for,
                    "trusted_hops": self.trusted_hops
                }
            )

    async def dispatch(self, request: Request, call_next):
        """Apply every matching limiter before the request reaches its handler."""
        path = request.url.path
        matching = [b for b in self.bindings if b.matches(path)]
        if not matching:
            return await call_next(request)

        ctx = build_request_context(request, self.trust_forwarded_for, self.trusted_hops)
        reported_headers = None
        reported_remaining = None

        for binding in matching:
            limiter = binding.limiter
            policy = limiter.policy
            decision = limiter.check(ctx)
            now = limiter.now()

            try:
                raise_for_decision(decision, policy, now)
            except RateLimitExceededError as exc:
                logger.warning(
                    "Request rejected by rate limiter",
                    extra={
                        "policy": policy.name,
                        "path": path,
                        "method": request.method,
                        "retry_after": exc.retry_after
                    }
                )
                return JSONResponse(
                    status_code=429,
                    content=rate_limit_error_body(exc),
                    headers=exc.headers
                )

            if decision.bypassed:
                continue

            if policy.counting_mode is CountingMode.FAILURES_ONLY:
                register_pending_outcome(request, limiter, decision.key)

            if reported_remaining is None or decision.remaining < reported_remaining:
                reported_remaining = decision.remaining
                reported_headers = rate_limit_headers(decision, policy.window_seconds, now)

        response = await call_next(request)

        if reported_headers:
            for name, value in reported_headers.items():
                response.headers[name] = value
        return response
