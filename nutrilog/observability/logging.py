from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


_CONFIGURED = False

# Loggers that write through our handler instead of their own.
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _shared_processors() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging(level: int | str = logging.INFO, *, json_logs: bool = True, force: bool = False) -> None:
    """Route structlog and stdlib records (access, metrics, analytics, authz) to stdout.

    JSON for deployments, key=value console output when ``json_logs`` is off.
    Only the first call takes effect unless ``force`` is set.
    """

    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    shared = _shared_processors()
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer: Any = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(colors=False)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=shared))

    resolved = _resolve_level(level)
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(resolved)

    for name in _SERVER_LOGGERS:
        logger = logging.getLogger(name)
        logger.handlers = [handler]
        logger.propagate = False
        logger.setLevel(resolved)

    _CONFIGURED = True
