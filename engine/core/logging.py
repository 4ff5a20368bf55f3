"""Structured logging for the mission engine.

Run-scoped fields (``mission_id``, ``run_id``) live in structlog contextvars,
so every line logged while a run executes carries them, including lines from
handlers and fetchers that never see the run object.
"""

import sys
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import structlog

from core.config import Settings


def _shared_processors(settings: Settings) -> list:
    timestamp = "iso" if settings.log_format == "json" else "%H:%M:%S"
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt=timestamp),
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(settings: Settings) -> None:
    """Route structlog through stdlib handlers at ``settings.log_level``."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(level=level, handlers=handlers, format="%(message)s", force=True)

    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False, pad_event=35,
                                                 exception_formatter=structlog.dev.plain_traceback)

    structlog.configure(
        processors=_shared_processors(settings) + [renderer],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def run_log_context(mission_id: Optional[str], run_id: str) -> Iterator[None]:
    """Tag every log line inside the block with the mission and run ids.

    Tasks spawned inside the block copy the context, so concurrent runs
    keep their own ids.
    """
    with structlog.contextvars.bound_contextvars(mission_id=mission_id, run_id=run_id):
        yield


def log_execution_time(logger: structlog.BoundLogger, operation: str,
                       start_time: float, end_time: float, **kwargs) -> None:
    logger.debug("Operation completed", operation=operation,
                 execution_time_seconds=round(end_time - start_time, 4), **kwargs)


def log_cache_operation(logger: structlog.BoundLogger, operation: str,
                        key: str, hit: Optional[bool] = None, **kwargs) -> None:
    if hit is not None:
        kwargs["cache_hit"] = hit
    logger.debug("Cache operation", operation=operation, cache_key=key, **kwargs)
