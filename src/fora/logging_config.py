"""Structured JSON logging for the Fora service.

``configure_logging()`` is called once, when the app module is imported or
by a CLI entry point.  From then on every ``logging.getLogger(__name__)``
record is written to stdout as a single JSON line.

Two ids live in ``contextvars`` and are added to every record emitted while
they are bound:

* ``request_id``: set per HTTP request by ``RequestIdMiddleware``.
* ``job_id``: set by ``bind_job_id()`` around work on one job, so worker,
  sweep and webhook lines for the same job can be grepped together.
"""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Iterator

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

ACCESS_LOGGER = "fora.access"

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_job_id_var: ContextVar[str] = ContextVar("job_id", default="")

# Attributes every LogRecord carries; anything else on a record came from ``extra=``.
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message"
}


def get_request_id() -> str:
    return _request_id_var.get()


def get_job_id() -> str:
    return _job_id_var.get()


@contextmanager
def bind_job_id(job_id: str) -> Iterator[None]:
    """Tag every log record emitted inside the block with ``job_id``."""
    token = _job_id_var.set(job_id)
    try:
        yield
    finally:
        _job_id_var.reset(token)


def _context_fields() -> dict[str, str]:
    fields = {"request_id": get_request_id(), "job_id": get_job_id()}
    return {k: v for k, v in fields.items() if v}


class _JsonFormatter(logging.Formatter):
    """One JSON object per record: standard fields, bound ids, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context_fields(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        )
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO") -> None:
    """Send all logging to stdout as JSON lines at ``level`` (e.g. ``"DEBUG"``)."""
    handler = logging.StreamHandler()
    handler.setFormatter(_JsonFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Outbound calls and uvicorn's own access lines are only interesting on failure
    for name in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info("JSON logging configured", extra={"log_level": level.upper()})


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind an ``X-Request-ID`` to each request and write one access line.

    A proxy-supplied id is kept; otherwise a hex UUID is generated.  The id is
    echoed on the response.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self._header_name) or uuid.uuid4().hex
        token = _request_id_var.set(request_id)
        started = time.monotonic()
        try:
            response = await call_next(request)
        finally:
            elapsed_ms = round((time.monotonic() - started) * 1000, 1)
            _request_id_var.reset(token)

        response.headers[self._header_name] = request_id
        logging.getLogger(ACCESS_LOGGER).info(
            "%s %s %s",
            request.method,
            request.url.path,
            response.status_code,
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
            },
        )
        return response
