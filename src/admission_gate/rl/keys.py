"""Rate limiting key utilities."""

import ipaddress
from dataclasses import dataclass
from typing import Callable, Optional

UNKNOWN_ADDRESS = "unknown"


@dataclass(frozen=True)
class RequestContext:
    """
    HTTP-agnostic view of an inbound request.

    Built by the HTTP layer and handed to key strategies and bypass
    predicates, so neither needs to know about Starlette requests.
    """
    remote_addr: Optional[str] = None
    user_id: Optional[str] = None
    path: str = ""
    method: str = ""
    forwarded_for: Optional[str] = None


KeyStrategy = Callable[[RequestContext], str]


def normalize_address(raw: Optional[str]) -> str:
    """
    Canonicalize a network address so one client always maps to one key.

    - strip whitespace, brackets and ports ("[::1]:8080", "10.0.0.1:443")
    - drop IPv6 zone identifiers ("fe80::1%eth0")
    - map IPv4-mapped IPv6 ("::ffff:10.0.0.1") to plain IPv4
    - compress IPv6

    Anything that does not parse as an IP address becomes UNKNOWN_ADDRESS.
    Never raises.
    """
    if not raw or not isinstance(raw, str):
        return UNKNOWN_ADDRESS

    host = raw.strip()
    if host.startswith("["):
        end = host.find("]")
        if end == -1:
            return UNKNOWN_ADDRESS
        host = host[1:end]
    elif host.count(":") == 1:
        # IPv4 with a port; bare IPv6 always has at least two colons
        host = host.split(":", 1)[0]

    host = host.split("%", 1)[0]

    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return UNKNOWN_ADDRESS

    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped

    return address.compressed


def by_remote_address(ctx: RequestContext) -> str:
    """
    Key a request by its caller's address.

    A forwarded address (only populated when proxy headers are trusted) wins
    over the socket peer, unless it does not parse as an address.
    """
    address = normalize_address(ctx.forwarded_for)
    if address == UNKNOWN_ADDRESS:
        address = normalize_address(ctx.remote_addr)
    return f"ip:{address}"


def by_authenticated_identity(ctx: RequestContext) -> str:
    """
    Key a request by its authenticated principal, falling back to its address.

    Authenticated users are limited per account rather than per shared IP;
    anonymous callers degrade to per-IP limiting.
    """
    user_id = ctx.user_id
    if user_id is not None:
        normalized = str(user_id).strip()
        if normalized:
            return f"user:{normalized}"
    return by_remote_address(ctx)
