"""Rate limiting configuration and wiring."""

import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from admission_gate.core.config import Settings, get_settings
from .exceptions import RateLimitConfigurationError
from .limiter import RateLimiter, StoreFailureMode
from .middleware import RouteBinding
from .policy import EnvironmentFlagBypass, default_policies
from .store import MemoryWindowStore, WindowStore

logger = logging.getLogger(__name__)


class RateLimitConfig(BaseModel):
    """Rate limiting configuration model."""

    enabled: bool = Field(default=True, description="Enable rate limiting")
    backend: str = Field(default="memory", pattern="^(memory|redis)$", description="Window store backend")
    redis_url: Optional[str] = Field(default=None, description="Redis URL if using Redis backend")
    store_failure_mode: StoreFailureMode = Field(
        default=StoreFailureMode.FAIL_OPEN,
        description="Resolution of window store faults"
    )
    bypass_env_var: str = Field(default="SKIP_RATE_LIMIT", description="Development bypass flag")
    trust_forwarded_for: bool = Field(default=False, description="Trust X-Forwarded-For")
    trusted_proxy_hops: int = Field(default=1, ge=1, description="Proxies appending to X-Forwarded-For")
    auth_paths: List[str] = Field(default_factory=lambda: ["/auth/login", "/auth/signup", "/auth/google/callback"])
    metered_paths: List[str] = Field(default_factory=lambda: ["/generation", "/tone/extract"])
    upload_paths: List[str] = Field(default_factory=lambda: ["/upload"])
    sweep_interval_seconds: float = Field(default=60.0, gt=0)


def get_rate_limit_config(settings: Optional[Settings] = None) -> RateLimitConfig:
    """Get rate limiting configuration from settings."""
    settings = settings or get_settings()

    return RateLimitConfig(
        enabled=settings.ENABLE_RATE_LIMITING,
        backend=settings.RATE_LIMIT_BACKEND,
        redis_url=settings.RATE_LIMIT_REDIS_URL,
        store_failure_mode=StoreFailureMode(settings.RATE_LIMIT_STORE_FAILURE_MODE),
        bypass_env_var=settings.RATE_LIMIT_BYPASS_ENV_VAR,
        trust_forwarded_for=settings.RATE_LIMIT_TRUST_FORWARDED_FOR,
        trusted_proxy_hops=settings.RATE_LIMIT_TRUSTED_PROXY_HOPS,
        auth_paths=settings.RATE_LIMIT_AUTH_PATHS,
        metered_paths=settings.RATE_LIMIT_METERED_PATHS,
        upload_paths=settings.RATE_LIMIT_UPLOAD_PATHS,
        sweep_interval_seconds=settings.RATE_LIMIT_SWEEP_INTERVAL
    )


def create_window_store(config: RateLimitConfig) -> WindowStore:
    """
    Create the window store shared by every limiter.

    Construct it once per process and pass it to each limiter.
    """
    if config.backend == "memory":
        return MemoryWindowStore(sweep_interval_seconds=config.sweep_interval_seconds)

    if config.backend == "redis":
        if not config.redis_url:
            raise RateLimitConfigurationError(
                "redis_url is required for the redis backend",
                config_field="redis_url",
                provided_value=config.redis_url
            )
        from .redis_store import RedisWindowStore
        return RedisWindowStore.from_url(config.redis_url)

    raise RateLimitConfigurationError(
        f"Unknown rate limiting backend: {config.backend}",
        config_field="backend",
        provided_value=config.backend
    )


def create_rate_limiters(config: RateLimitConfig, store: WindowStore) -> Dict[str, RateLimiter]:
    """
    Build one limiter per product policy, all sharing `store`.

    Every policy receives the environment-flag bypass, evaluated per request.
    """
    bypass = EnvironmentFlagBypass(config.bypass_env_var)
    limiters = {
        name: RateLimiter(policy, store, on_store_failure=config.store_failure_mode)
        for name, policy in default_policies(bypass).items()
    }

    logger.info(
        "Rate limiters created",
        extra={
            "policies": {
                name: {
                    "max_events": limiter.policy.max_events,
                    "window_seconds": limiter.policy.window_seconds,
                    "counting_mode": limiter.policy.counting_mode.value
                }
                for name, limiter in limiters.items()
            },
            "store_failure_mode": config.store_failure_mode.value
        }
    )
    return limiters


def create_route_bindings(config: RateLimitConfig, limiters: Dict[str, RateLimiter]) -> List[RouteBinding]:
    """
    Bind limiters to paths: general traffic everywhere, then the
    authentication, metered and upload policies on their path prefixes.
    """
    bindings = [RouteBinding(limiters["general"])]
    for name, paths in (
        ("authentication", config.auth_paths),
        ("metered", config.metered_paths),
        ("upload", config.upload_paths),
    ):
        if paths:
            bindings.append(RouteBinding(limiters[name], tuple(paths)))
    return bindings
