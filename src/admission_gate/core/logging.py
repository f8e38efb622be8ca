"""
Logging configuration for the admission gate.

Modules log through the standard library (`logging.getLogger(__name__)` with
`extra={...}`); structlog renders those records and the lifespan's
structured events through one pipeline. Every event is stamped with the
service name and deployment environment so rate limit rejections from
several instances can be told apart.
"""

import logging
import sys
from typing import Any, Callable, Dict, Optional, Union

import structlog

from admission_gate.core.config import Settings, settings as default_settings

SERVICE_NAME = "admission-gate"

EventDict = Dict[str, Any]


def service_context(settings: Settings) -> Callable[[Any, str, EventDict], EventDict]:
    """Build a processor adding service and environment to every event."""
    environment = settings.ENVIRONMENT

    def processor(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("environment", environment)
        return event_dict

    return processor


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog and the root logger from settings.

    Safe to call once per application instance; the latest settings win.
    """
    settings = settings or default_settings
    level = getattr(logging, settings.LOG_LEVEL.upper())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            service_context(settings),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _get_renderer(settings),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    # basicConfig is a no-op once handlers exist, so apply the level directly
    logging.basicConfig(format="%(message)s", stream=sys.stdout)
    logging.getLogger().setLevel(level)


def _get_renderer(settings: Settings) -> Union[structlog.processors.JSONRenderer, structlog.dev.ConsoleRenderer]:
    """Get the appropriate log renderer based on configuration."""
    if settings.LOG_FORMAT.lower() == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
