"""Structured logging for the cache service and its batch jobs.

Every line carries the level and an ISO timestamp. Lines written while a
background job runs also carry ``job=<name>`` (see :func:`job_context`), so a
sync or image run can be followed through the cache and storage layers
without threading the process id through every call.
"""

import logging
import sys
from contextvars import Context, copy_context

import structlog


def parse_level(name: str) -> int:
    """Map a level name such as "debug" or "WARNING" to a logging constant.

    Unknown names fall back to INFO.
    """
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _renderer(json_output: bool) -> structlog.types.Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(*, json_output: bool = False, level: int | str = logging.INFO) -> None:
    """Configure structlog for the process.

    Args:
        json_output: One JSON object per line for deployments, instead of the
            console renderer used for local runs.
        level: Minimum level, as a logging constant or a name like ``"debug"``
            (the ``TOKKO_CACHE_LOG_LEVEL`` setting).
    """
    if isinstance(level, str):
        level = parse_level(level)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ExtraAdder(),
            _renderer(json_output),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def job_context(job: str) -> Context:
    """A copy of the current context in which every log line carries ``job=<job>``.

    Pass it as ``context=`` to :func:`asyncio.create_task`.
    """
    ctx = copy_context()
    ctx.run(structlog.contextvars.bind_contextvars, job=job)
    return ctx


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
