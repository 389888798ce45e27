"""
Catalog Client
==============

Reads tutor and student snapshots from the catalog service. The booking
core copies the tutor's hourly rate and both display names onto the
booking at creation time so later catalog edits never reach existing
bookings.

Contract::

    GET {CATALOG_BASE_URL}/tutors/{id}    -> {id, display_name, session_rate_per_hour}
    GET {CATALOG_BASE_URL}/students/{id}  -> {id, display_name}
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from tutorbook.core.config import settings
from tutorbook.core.exceptions import CollaboratorUnavailableError, NotFoundError
from tutorbook.integrations.http import request_with_retry

logger = logging.getLogger(__name__)

_COLLABORATOR = "catalog"


@dataclass(frozen=True)
class TutorSnapshot:
    id: uuid.UUID
    display_name: str
    session_rate_per_hour: Decimal


@dataclass(frozen=True)
class StudentSnapshot:
    id: uuid.UUID
    display_name: str


def _headers() -> dict[str, str]:
    headers = {"Accept": "application/json"}
    if settings.catalog_api_key:
        headers["Authorization"] = f"Bearer {settings.catalog_api_key}"
    return headers


def _base_url() -> str:
    if not settings.catalog_base_url:
        raise CollaboratorUnavailableError(_COLLABORATOR, "CATALOG_BASE_URL is not configured")
    return settings.catalog_base_url.rstrip("/")


async def _fetch(
    path: str,
    entity: str,
    entity_id: uuid.UUID,
    client: Optional[httpx.AsyncClient],
) -> dict:
    url = f"{_base_url()}/{path}/{entity_id}"
    if client is None:
        async with httpx.AsyncClient() as owned:
            response = await request_with_retry(
                owned, "GET", url, collaborator=_COLLABORATOR, headers=_headers()
            )
    else:
        response = await request_with_retry(
            client, "GET", url, collaborator=_COLLABORATOR, headers=_headers()
        )

    if response.status_code == 404:
        raise NotFoundError(entity, entity_id)
    if response.status_code >= 400:
        raise CollaboratorUnavailableError(
            _COLLABORATOR, f"unexpected HTTP {response.status_code} for {entity} {entity_id}"
        )
    try:
        return response.json()
    except ValueError as exc:
        raise CollaboratorUnavailableError(_COLLABORATOR, f"malformed response: {exc}") from exc


async def get_tutor_snapshot(
    tutor_id: uuid.UUID,
    client: Optional[httpx.AsyncClient] = None,
) -> TutorSnapshot:
    """Fetch the tutor's display name and current hourly rate."""
    payload = await _fetch("tutors", "Tutor", tutor_id, client)
    try:
        rate = Decimal(str(payload["session_rate_per_hour"]))
    except (KeyError, InvalidOperation) as exc:
        raise CollaboratorUnavailableError(
            _COLLABORATOR, f"tutor {tutor_id} has no usable session_rate_per_hour"
        ) from exc
    if rate <= 0:
        raise CollaboratorUnavailableError(
            _COLLABORATOR, f"tutor {tutor_id} has non-positive rate {rate}"
        )

    logger.debug("Catalog snapshot for tutor %s: rate=%s", tutor_id, rate)
    return TutorSnapshot(
        id=tutor_id,
        display_name=str(payload.get("display_name") or ""),
        session_rate_per_hour=rate,
    )


async def get_student_snapshot(
    student_id: uuid.UUID,
    client: Optional[httpx.AsyncClient] = None,
) -> StudentSnapshot:
    payload = await _fetch("students", "Student", student_id, client)
    return StudentSnapshot(
        id=student_id,
        display_name=str(payload.get("display_name") or ""),
    )
