"""Helpers shared by the rate limiting middleware and route dependencies."""

import logging
from typing import List, Optional, Tuple

from starlette.requests import Request

from .keys import RequestContext
from .limiter import RateLimiter

logger = logging.getLogger(__name__)

PENDING_OUTCOMES_ATTR = "rate_limit_pending_outcomes"


def _authenticated_user_id(request: Request) -> Optional[str]:
    """Identity attached by the upstream authentication layer, if any."""
    user = getattr(request.state, "user", None)
    if user is not None:
        user_id = getattr(user, "user_id", None)
        if user_id:
            return str(user_id)

    user_id = getattr(request.state, "user_id", None)
    return str(user_id) if user_id else None


def forwarded_client_address(header: Optional[str], trusted_hops: int = 1) -> Optional[str]:
    """
    Pick the client address out of an X-Forwarded-For chain.

    Each proxy appends the peer it saw, so only the rightmost `trusted_hops`
    entries were written by our own infrastructure. The entry they recorded
    is the client; everything to its left is whatever the client sent.
    """
    if not header:
        return None
    hops = [hop.strip() for hop in header.split(",")]
    hops = [hop for hop in hops if hop]
    if not hops:
        return None
    return hops[max(len(hops) - trusted_hops, 0)]


def build_request_context(
    request: Request,
    trust_forwarded_for: bool = False,
    trusted_hops: int = 1
) -> RequestContext:
    """
    Build the HTTP-agnostic request context used by key strategies.

    X-Forwarded-For is only consulted when the deployment sits behind a
    trusted proxy; otherwise clients could pick their own key.
    """
    forwarded_for = None
    if trust_forwarded_for:
        forwarded_for = forwarded_client_address(request.headers.get("x-forwarded-for"), trusted_hops)

    return RequestContext(
        remote_addr=request.client.host if request.client else None,
        user_id=_authenticated_user_id(request),
        path=request.url.path,
        method=request.method,
        forwarded_for=forwarded_for
    )


def register_pending_outcome(request: Request, limiter: RateLimiter, key: str) -> None:
    """Remember that `limiter` is waiting for the outcome of this request."""
    pending: List[Tuple[RateLimiter, str]] = getattr(request.state, PENDING_OUTCOMES_ATTR, None) or []
    pending.append((limiter, key))
    setattr(request.state, PENDING_OUTCOMES_ATTR, pending)


def report_outcome(request: Request, succeeded: bool) -> int:
    """
    Settle the pending failure-counting limiters for this request.

    Called by guarded handlers (e.g. login) once they know whether the
    operation succeeded. Outcomes are settled once; later calls for the same
    request are no-ops.

    Returns:
        Number of limiters that counted a failure
    """
    pending: List[Tuple[RateLimiter, str]] = getattr(request.state, PENDING_OUTCOMES_ATTR, None) or []
    setattr(request.state, PENDING_OUTCOMES_ATTR, [])

    counted = 0
    for limiter, key in pending:
        if limiter.record_outcome(key, succeeded):
            counted += 1

    if pending:
        logger.debug(
            "Settled rate limit outcomes",
            extra={"path": request.url.path, "succeeded": succeeded, "counted": counted}
        )
    return counted
