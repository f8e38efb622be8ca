"""Configuration management for the admission gate."""

from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings, loaded from the environment and `.env`."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Server configuration
    HOST: str = Field(default="127.0.0.1", description="Server host")
    PORT: int = Field(default=8000, description="Server port")
    DEBUG: bool = Field(default=False, description="Debug mode")
    ENVIRONMENT: str = Field(default="development", description="Deployment environment name")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Logging format: json or text")

    # Security settings
    CORS_ORIGINS: list[str] = Field(default_factory=lambda: ["*"], description="CORS allowed origins")

    # Rate limiting configuration
    ENABLE_RATE_LIMITING: bool = Field(default=True, description="Enable rate limiting")
    RATE_LIMIT_BACKEND: str = Field(default="memory", pattern="^(memory|redis)$", description="Window store backend")
    RATE_LIMIT_REDIS_URL: Optional[str] = Field(default=None, description="Redis URL for the redis window store")
    RATE_LIMIT_STORE_FAILURE_MODE: str = Field(
        default="open",
        pattern="^(open|closed)$",
        description="Admit (open) or reject (closed) requests when the window store is unavailable"
    )
    RATE_LIMIT_BYPASS_ENV_VAR: str = Field(
        default="SKIP_RATE_LIMIT",
        description="Environment variable that disables every limiter when true, read per request"
    )
    RATE_LIMIT_TRUST_FORWARDED_FOR: bool = Field(
        default=False,
        description="Key by the client address recorded in X-Forwarded-For (only behind a trusted proxy)"
    )
    RATE_LIMIT_TRUSTED_PROXY_HOPS: int = Field(
        default=1,
        ge=1,
        description="Number of trusted proxies appending to X-Forwarded-For"
    )
    RATE_LIMIT_AUTH_PATHS: list[str] = Field(
        default_factory=lambda: ["/auth/login", "/auth/signup", "/auth/google/callback"],
        description="Path prefixes guarded by the authentication policy"
    )
    RATE_LIMIT_METERED_PATHS: list[str] = Field(
        default_factory=lambda: ["/generation", "/tone/extract"],
        description="Path prefixes guarded by the metered-operation policy"
    )
    RATE_LIMIT_UPLOAD_PATHS: list[str] = Field(
        default_factory=lambda: ["/upload"],
        description="Path prefixes guarded by the upload policy"
    )
    RATE_LIMIT_SWEEP_INTERVAL: float = Field(
        default=60.0,
        gt=0,
        description="Seconds between sweeps of expired in-memory windows"
    )

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator('LOG_FORMAT')
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format"""
        valid_formats = ['json', 'text']
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}")
        return v.lower()

    @model_validator(mode='after')
    def validate_redis_backend(self):
        """A redis backend needs somewhere to connect to"""
        if self.RATE_LIMIT_BACKEND == "redis" and not self.RATE_LIMIT_REDIS_URL:
            raise ValueError("RATE_LIMIT_REDIS_URL is required when RATE_LIMIT_BACKEND is 'redis'")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS allowed origins."""
        return self.CORS_ORIGINS


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings (for dependency injection)"""
    return settings
