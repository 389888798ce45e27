"""
Shared HTTP plumbing for outbound collaborator calls.

Every collaborator (catalog, proof store, notifier) goes through
``request_with_retry`` so timeouts, backoff and error translation behave
the same everywhere.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from tutorbook.core.config import settings
from tutorbook.core.exceptions import CollaboratorUnavailableError

logger = logging.getLogger(__name__)


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    collaborator: str,
    headers: dict[str, str] | None = None,
    json_body: dict[str, Any] | None = None,
) -> httpx.Response:
    """Execute an HTTP request with bounded exponential-backoff retries.

    Retries on transient failures (5xx, timeouts, connection errors). A
    response below 500 is returned as-is on the first attempt so the caller
    can interpret 404 and friends.

    Raises:
        CollaboratorUnavailableError: After all retries are exhausted.
    """
    max_retries = max(1, settings.collaborator_max_retries)
    backoff = settings.collaborator_backoff_seconds
    last_error = "no attempt made"

    for attempt in range(1, max_retries + 1):
        try:
            response = await client.request(
                method,
                url,
                headers=headers,
                json=json_body,
                timeout=settings.collaborator_timeout_seconds,
            )
            if response.status_code < 500:
                return response

            last_error = f"HTTP {response.status_code}"
            logger.warning(
                "%s server error on attempt %d/%d: HTTP %d",
                collaborator,
                attempt,
                max_retries,
                response.status_code,
            )
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            last_error = f"{type(exc).__name__}: {exc}"
            logger.warning(
                "%s transport error on attempt %d/%d: %s",
                collaborator,
                attempt,
                max_retries,
                exc,
            )

        if attempt < max_retries:
            await asyncio.sleep(backoff)
            backoff *= 2

    logger.error(
        "%s request %s %s failed after %d attempts: %s",
        collaborator,
        method,
        url,
        max_retries,
        last_error,
    )
    raise CollaboratorUnavailableError(
        collaborator,
        f"request failed after {max_retries} attempts ({last_error})",
    )
