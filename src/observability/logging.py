"""
structlog setup for the digest pipeline.

Scheduler, orchestrator, and service code log through structlog with
keyword fields; collectors, gateways, and storage use stdlib loggers,
which are routed through the same handler.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from src.config.settings import get_settings

QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "asyncpg", "feedparser")


def setup_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Log level name; defaults to LOG_LEVEL
        json_logs: Render JSON lines; defaults to True in production
    """
    settings = get_settings()
    level = (level or settings.log_level).upper()
    if json_logs is None:
        json_logs = settings.is_production

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # CLI output goes to stdout, logs to stderr
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level),
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_execution_context(task_name: str, execution_id: str) -> None:
    """
    Tag every log line emitted by the current asyncio task with the
    scheduled task name and execution id.

    Each scheduler execution runs in its own asyncio task, so the
    binding does not leak into other executions.
    """
    structlog.contextvars.bind_contextvars(task_name=task_name, execution_id=execution_id)
