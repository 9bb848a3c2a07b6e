"""Structured logging setup."""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import structlog

from ...shared.exceptions import GoalStakeError
from ..config.settings import LoggingConfig

_configured = False


def configure_logging(config: Optional[LoggingConfig] = None) -> structlog.stdlib.BoundLogger:
    """Configure standard logging and the structlog processor chain once."""
    global _configured

    config = config or LoggingConfig()
    if _configured:
        return structlog.get_logger()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, config.level),
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if config.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True

    logger = structlog.get_logger(__name__)
    logger.info("Structured logging configured", level=config.level, format=config.format)
    return logger


@contextmanager
def log_rejections(logger: Any, operation: str, **fields: Any) -> Iterator[None]:
    """
    Log a warning for any GoalStakeError raised inside the block, then re-raise.

    Usage:
        with log_rejections(logger, "join_challenge", challenge_id=cid, **ctx.to_log_fields()):
            ...
    """
    try:
        yield
    except GoalStakeError as e:
        logger.warning(
            "Operation rejected",
            operation=operation,
            error_code=e.code.value,
            error_type=e.__class__.__name__,
            reason=e.message,
            **fields,
        )
        raise
