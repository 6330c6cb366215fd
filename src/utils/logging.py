"""Shared structured logging for the content pipeline.

Every module obtains its logger through ``get_logger`` so worker, CLI and
library code emit the same JSON event stream.
"""

import logging
import os
import sys

import structlog

_configured = False


def _configure() -> None:
    """Configure structlog and the stdlib sink exactly once per process."""
    global _configured
    if _configured:
        return

    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    _configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger bound to ``name``.

    Args:
        name: Logger name, usually ``__name__`` of the calling module.

    Returns:
        structlog logger emitting JSON lines on stdout.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("job_enqueued", content_id="abc123")
    """
    _configure()
    return structlog.get_logger(name)
