"""
Proof Store Client
==================

Existence check for opaque proof references (payment screenshots, session
evidence, dispute evidence). The booking core never stores the files
themselves, only the reference string.

Contract::

    HEAD {PROOF_STORE_BASE_URL}/proofs/{reference}   -> 200 | 404
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

import httpx

from tutorbook.core.config import settings
from tutorbook.core.exceptions import (
    CollaboratorUnavailableError,
    ProofNotFoundError,
    ProofRequiredError,
)
from tutorbook.integrations.http import request_with_retry

logger = logging.getLogger(__name__)

_COLLABORATOR = "proof_store"


def normalize_reference(reference: Optional[str], what: str = "proof") -> str:
    """Strip a reference and reject blanks."""
    cleaned = (reference or "").strip()
    if not cleaned:
        raise ProofRequiredError(f"A non-empty {what} reference is required.")
    return cleaned


async def ensure_exists(
    reference: str,
    client: Optional[httpx.AsyncClient] = None,
) -> None:
    """Raise ``ProofNotFoundError`` unless the proof store knows ``reference``.

    When no proof store is configured the check is skipped.
    """
    if not settings.proof_store_base_url:
        logger.debug("Proof store not configured; skipping existence check for %s", reference)
        return

    url = f"{settings.proof_store_base_url.rstrip('/')}/proofs/{quote(reference, safe='')}"
    if client is None:
        async with httpx.AsyncClient() as owned:
            response = await request_with_retry(owned, "HEAD", url, collaborator=_COLLABORATOR)
    else:
        response = await request_with_retry(client, "HEAD", url, collaborator=_COLLABORATOR)

    if response.status_code == 404:
        raise ProofNotFoundError(f"Proof reference '{reference}' does not exist.")
    if response.status_code >= 400:
        raise CollaboratorUnavailableError(
            _COLLABORATOR, f"unexpected HTTP {response.status_code} for proof {reference}"
        )
