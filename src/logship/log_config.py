"""
Structured logging setup for the shipper's own diagnostics.

The shipper logs through structlog; applications that already configure
structlog can skip this.
"""

import logging

import structlog

# Loggers that must never feed back into a shipper capturing stdlib logging
QUIET_LOGGERS = ("aiohttp.client", "aiohttp.internal", "asyncio")


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Configure structured logging for the shipper."""
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    logging.basicConfig(
        format="%(message)s",
        level=level,
    )

    # basicConfig is a no-op once the root logger has handlers
    logging.getLogger().setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
