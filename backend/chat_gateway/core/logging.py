import logging
import sys
import traceback
from typing import Any

import httpx
import structlog

from chat_gateway.core.config import settings


def configure_logging(level: int = logging.INFO) -> None:
    """Route structlog and stdlib logging through one renderer.

    Local runs get the console renderer; everything else emits JSON lines so
    the collector can index request ids and error details.
    """
    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if settings.ENVIRONMENT == "local":
        processors = shared + [structlog.dev.ConsoleRenderer()]
    else:
        processors = shared + [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def describe_exception(exc: BaseException) -> dict[str, Any]:
    """Collect operator-side diagnostics for an exception.

    Includes the ``__cause__``/``__context__`` chain, members of exception
    groups, and the HTTP status/body attached by httpx or openai errors.
    """
    detail: dict[str, Any] = {
        "error": str(exc),
        "error_type": type(exc).__name__,
        "stack": "".join(traceback.format_exception(exc)),
    }

    causes = []
    seen = {id(exc)}
    current = exc.__cause__ or exc.__context__
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        causes.append(f"{type(current).__name__}: {current}")
        current = current.__cause__ or current.__context__
    if causes:
        detail["causes"] = causes

    if isinstance(exc, BaseExceptionGroup):
        detail["sub_errors"] = [
            f"{type(sub).__name__}: {sub}" for sub in exc.exceptions
        ]

    response = getattr(exc, "response", None)
    if response is not None:
        detail["response_status"] = getattr(response, "status_code", None)
        try:
            detail["response_body"] = response.text
        except httpx.ResponseNotRead:
            detail["response_body"] = None
    return detail
