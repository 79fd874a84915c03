from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx
from fastapi import Request

from felicity.core.config import settings
from felicity.core.errors import ExternalDependencyFailure

logger = logging.getLogger(__name__)


class PublishAnnouncer:
    """Posts a publish summary to an organiser's Discord-style webhook.

    Delivery is best effort: `dispatch` schedules the post on a background
    task and failures are only logged.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.WEBHOOK_TIMEOUT_SECONDS
        self._transport = transport
        self._tasks: set[asyncio.Task] = set()

    async def post(self, webhook_url: str, content: str) -> None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            r = await client.post(webhook_url, json={"content": content})

        if r.status_code >= 400:
            raise ExternalDependencyFailure(f"Webhook error {r.status_code}: {r.text[:200]}")

    async def _deliver(self, webhook_url: str, content: str) -> None:
        try:
            await self.post(webhook_url, content)
        except Exception as e:
            # Never propagate: publishing has already succeeded
            logger.warning("publish webhook failed: %s", e)

    def dispatch(self, webhook_url: Optional[str], content: str) -> Optional[asyncio.Task]:
        if not webhook_url:
            return None
        task = asyncio.create_task(self._deliver(webhook_url, content))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def shutdown(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


def get_announcer(request: Request) -> PublishAnnouncer:
    return request.app.state.announcer
