from __future__ import annotations

import logging
import sys
import time
import uuid
from typing import Any, Dict

import structlog
from fastapi import Request

_SECRET_KEYS = {"secret", "token", "x_webhook_secret", "tokensh", "token_sh"}


def _add_log_level(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    event_dict["level"] = method_name
    return event_dict


def _mask_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    for key in _SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def configure_logging(env: str = "development") -> None:
    """Configure structlog for stdout.

    Development gets the colored console renderer; staging and production
    emit one JSON object per line for log shipping.
    """
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _add_log_level,
        _mask_secrets,
        timestamper,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if env == "development":
        renderer: Any = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    # Configure standard logging to go through structlog
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Bind request_id, method and path to every log line of a request."""
    start = time.perf_counter()

    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=str(request.url.path),
    )

    response = None
    try:
        response = await call_next(request)
    finally:
        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        logger = structlog.get_logger("request")
        logger.info(
            "request.completed",
            status=getattr(response, "status_code", 0) if response else 500,
            duration_ms=duration_ms,
        )
        structlog.contextvars.clear_contextvars()

    if response:
        response.headers["x-request-id"] = request_id
    return response
