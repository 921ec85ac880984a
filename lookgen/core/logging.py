"""
Structured Logging Configuration with structlog

JSON events for the generation core. While a job is being tracked, every
event also carries owner_id, job_id, job_type and stage from the
surrounding LogContext.
"""

import sys
import time
import inspect
import logging
import structlog
from typing import Optional, Any, Dict
from datetime import datetime, timezone
from contextvars import ContextVar
from functools import wraps

from lookgen.core.config import settings

# Context variables for job-scoped logging
owner_id_var: ContextVar[Optional[str]] = ContextVar("owner_id", default=None)
job_id_var: ContextVar[Optional[str]] = ContextVar("job_id", default=None)
job_type_var: ContextVar[Optional[str]] = ContextVar("job_type", default=None)
stage_var: ContextVar[Optional[str]] = ContextVar("stage", default=None)

_CONTEXT_VARS: Dict[str, ContextVar] = {
    "owner_id": owner_id_var,
    "job_id": job_id_var,
    "job_type": job_type_var,
    "stage": stage_var,
}

# Loggers that drown out pipeline events at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "PIL", "asyncio")


def add_job_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add version and the tracked job's context; explicit fields win."""
    event_dict["version"] = settings.APP_VERSION

    for key, var in _CONTEXT_VARS.items():
        value = var.get()
        if value is not None:
            event_dict.setdefault(key, value)

    return event_dict


def add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    event_dict["timestamp"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return event_dict


def setup_logging(
    log_level: Optional[str] = None,
    json_format: Optional[bool] = None
):
    """
    Configure structured logging.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR; defaults to settings.LOG_LEVEL
        json_format: JSON lines when True, colored console otherwise;
            defaults to settings.LOG_FORMAT_JSON
    """
    level = (log_level or settings.LOG_LEVEL).upper()
    if json_format is None:
        json_format = settings.LOG_FORMAT_JSON

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level),
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            add_timestamp,
            add_job_context,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def current_context() -> Dict[str, str]:
    """Snapshot of the job context visible to the caller."""
    return {key: var.get() for key, var in _CONTEXT_VARS.items() if var.get() is not None}


class LogContext:
    """
    Bind job context for the events logged inside the block.

    Only the fields passed are set; the outer values come back on exit.

    Usage:
        with LogContext(job_id=job.id, job_type="outfit_render"):
            logger.info("poll_started")
    """

    def __init__(
        self,
        job_id: Optional[str] = None,
        stage: Optional[str] = None,
        owner_id: Optional[str] = None,
        job_type: Optional[str] = None
    ):
        self._values = {
            "owner_id": owner_id,
            "job_id": job_id,
            "job_type": job_type,
            "stage": stage,
        }
        self._tokens = []

    def __enter__(self):
        for key, value in self._values.items():
            if value:
                self._tokens.append((_CONTEXT_VARS[key], _CONTEXT_VARS[key].set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)
        return False


def with_logging(stage: str):
    """
    Wrap a pipeline stage coroutine with started/completed/failed events.

    Usage:
        @with_logging("mannequin")
        async def _mannequin_stage(self, ...):
            ...
    """
    def decorator(func):
        if not inspect.iscoroutinefunction(func):
            raise TypeError("with_logging only wraps coroutine functions")

        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)

            with LogContext(stage=stage):
                logger.info("stage_started")
                started = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    logger.error(
                        "stage_failed",
                        duration_ms=int((time.perf_counter() - started) * 1000),
                        error=str(e),
                        error_type=type(e).__name__
                    )
                    raise
                logger.info(
                    "stage_completed",
                    duration_ms=int((time.perf_counter() - started) * 1000)
                )
                return result

        return wrapper

    return decorator
