"""
Notifier Dispatcher
===================

Background task that drains the event outbox and forwards each event to
the notification service webhook. When ``NOTIFIER_WEBHOOK_URL`` is unset
the events are only logged, which is the default for local development.

Delivery is best effort: a webhook that stays down after the retry budget
loses that event (logged at ERROR) and the dispatcher moves on.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from tutorbook.core.config import settings
from tutorbook.core.exceptions import CollaboratorUnavailableError
from tutorbook.events.bookingEvents import DomainEvent, get_outbox
from tutorbook.integrations.http import request_with_retry

logger = logging.getLogger(__name__)

_COLLABORATOR = "notifier"


async def deliver(event: DomainEvent, client: httpx.AsyncClient) -> bool:
    """Send a single event. Returns ``True`` when the webhook accepted it."""
    payload = event.to_payload()
    if not settings.notifier_webhook_url:
        logger.info("Notification (no webhook configured): %s", payload)
        return True

    try:
        response = await request_with_retry(
            client,
            "POST",
            settings.notifier_webhook_url,
            collaborator=_COLLABORATOR,
            json_body=payload,
        )
    except CollaboratorUnavailableError as exc:
        logger.error("Dropping %s for booking %s: %s", event.event_type, event.booking_id, exc)
        return False

    if response.status_code >= 400:
        logger.error(
            "Notifier rejected %s for booking %s: HTTP %d",
            event.event_type,
            event.booking_id,
            response.status_code,
        )
        return False
    return True


class NotifierDispatcher:
    """Owns the outbox-draining task for the lifetime of the application."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client
        self._owns_client = client is None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        if self._client is None:
            self._client = httpx.AsyncClient()
        self._task = asyncio.create_task(self._run(), name="notifier-dispatcher")
        logger.info("Notifier dispatcher started")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("Notifier dispatcher stopped")

    async def _run(self) -> None:
        outbox = get_outbox()
        while True:
            event = await outbox.get()
            try:
                await deliver(event, self._client)
            except Exception:
                logger.exception("Unexpected error delivering %s", event.event_type)
            finally:
                outbox.task_done()
