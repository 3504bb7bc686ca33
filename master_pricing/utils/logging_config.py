"""structlog configuration for the pricing functions."""

import logging
from typing import Optional

import structlog

from master_pricing.config.settings import settings


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Configure structlog processors and the minimum log level.

    Args:
        level: Level name (``DEBUG``, ``INFO``, ...). Defaults to LOG_LEVEL.
        json_logs: Render JSON lines instead of console output. Defaults to LOG_JSON.
    """
    level_name = (level or settings.log_level).upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    use_json = settings.log_json if json_logs is None else json_logs
    renderer = structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=False,
    )
