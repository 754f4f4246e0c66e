"""Correlation ID middleware for request tracing.

Every response carries ``X-Request-ID``; the same id is attached to each
log entry by ``thesisflow.core.logging.add_correlation_id`` and to error
bodies via the exception handlers.
"""

import re
import uuid

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI

REQUEST_ID_HEADER = "X-Request-ID"

# Accept ids from the frontend or a proxy, but nothing that could break a log line
_REQUEST_ID_RE = re.compile(r"[A-Za-z0-9._:-]{1,128}")


def is_valid_request_id(value: str) -> bool:
    return bool(_REQUEST_ID_RE.fullmatch(value))


def setup_correlation_middleware(app: FastAPI) -> None:
    """Echo an acceptable client-supplied X-Request-ID, otherwise generate a UUID."""
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name=REQUEST_ID_HEADER,
        generator=lambda: str(uuid.uuid4()),
        validator=is_valid_request_id,
        transformer=lambda value: value,
    )


def get_correlation_id() -> str | None:
    """Current request's correlation ID, or None outside a request."""
    return correlation_id.get(None)
