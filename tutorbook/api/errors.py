"""Translation of domain errors into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import HTTPException

from tutorbook.core.exceptions import BookingDomainError

logger = logging.getLogger(__name__)


def to_http_exception(exc: BookingDomainError) -> HTTPException:
    """Map a domain error onto its status code with a machine-readable body.

    The response detail is ``{"error": <code>, "message": <text>}`` so
    clients can switch on the code and show the message.
    """
    if exc.http_status >= 500:
        logger.error("Request failed with %s: %s", exc.error_code, exc.message)
    headers = {"Retry-After": "5"} if exc.http_status == 503 else None
    return HTTPException(
        status_code=exc.http_status,
        detail={"error": exc.error_code, "message": exc.message},
        headers=headers,
    )
