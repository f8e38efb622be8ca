"""FastAPI dependency for per-route rate limiting."""

from fastapi import Request, Response

from .http import build_request_context, register_pending_outcome
from .limiter import Decision, RateLimiter
from .policy import CountingMode
from .reporter import raise_for_decision, rate_limit_headers


class RateLimitGuard:
    """
    Route dependency enforcing one limiter.

    Raises RateLimitExceededError on denial; the application's exception
    handler renders it as a 429 response. Usage:

        guard = RateLimitGuard(limiters["upload"])

        @router.post("/upload", dependencies=[Depends(guard)])
        async def upload(...): ...
    """

    def __init__(self, limiter: RateLimiter, trust_forwarded_for: bool = False, trusted_hops: int = 1):
        self.limiter = limiter
        self.trust_forwarded_for = trust_forwarded_for
        self.trusted_hops = trusted_hops

    async def __call__(self, request: Request, response: Response) -> Decision:
        limiter = self.limiter
        policy = limiter.policy

        decision = limiter.check(build_request_context(request, self.trust_forwarded_for, self.trusted_hops))
        now = limiter.now()
        raise_for_decision(decision, policy, now)

        if not decision.bypassed:
            for name, value in rate_limit_headers(decision, policy.window_seconds, now).items():
                response.headers[name] = value
            if policy.counting_mode is CountingMode.FAILURES_ONLY:
                register_pending_outcome(request, limiter, decision.key)

        return decision
