"""Room-based fan-out of forum changes to connected sockets.

Membership is process-local and delivery is at most once: a socket that is
not in the room when `publish` runs never sees that frame.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Protocol

from fastapi import Request

logger = logging.getLogger(__name__)

FORUM_EVENT = "forum:event"


def forum_room(event_id: int | str) -> str:
    return f"forum:{event_id}"


class Subscriber(Protocol):
    async def send_json(self, data: Any) -> None: ...


class Broadcaster(ABC):
    """Interface the forum engine publishes through."""

    async def init(self) -> None:
        """Acquire resources. Called once at application startup."""

    async def shutdown(self) -> None:
        """Release resources. Called once at application shutdown."""

    @abstractmethod
    async def join(self, room: str, subscriber: Subscriber) -> None:
        ...

    @abstractmethod
    async def leave(self, room: str, subscriber: Subscriber) -> None:
        """Remove a subscriber from one room. Leaving twice is a no-op."""
        ...

    @abstractmethod
    async def leave_all(self, subscriber: Subscriber) -> None:
        ...

    @abstractmethod
    async def publish(self, room: str, type_: str, payload: dict) -> int:
        """Send `{"event": "forum:event", "type", "payload"}` to the room.

        Returns the number of subscribers the frame was delivered to.
        """
        ...


class InMemoryBroadcaster(Broadcaster):
    def __init__(self) -> None:
        self._rooms: dict[str, set[Subscriber]] = {}
        self._lock = asyncio.Lock()

    async def shutdown(self) -> None:
        async with self._lock:
            self._rooms.clear()

    async def join(self, room: str, subscriber: Subscriber) -> None:
        async with self._lock:
            self._rooms.setdefault(room, set()).add(subscriber)

    async def leave(self, room: str, subscriber: Subscriber) -> None:
        async with self._lock:
            members = self._rooms.get(room)
            if not members:
                return
            members.discard(subscriber)
            if not members:
                del self._rooms[room]

    async def leave_all(self, subscriber: Subscriber) -> None:
        async with self._lock:
            for room in list(self._rooms):
                members = self._rooms[room]
                members.discard(subscriber)
                if not members:
                    del self._rooms[room]

    def members(self, room: str) -> set[Subscriber]:
        return set(self._rooms.get(room, ()))

    async def publish(self, room: str, type_: str, payload: dict) -> int:
        async with self._lock:
            targets = list(self._rooms.get(room, ()))

        frame = {"event": FORUM_EVENT, "type": type_, "payload": payload}
        delivered = 0
        dead: list[Subscriber] = []

        for subscriber in targets:
            try:
                await subscriber.send_json(frame)
                delivered += 1
            except Exception as e:
                logger.warning("dropping subscriber from %s after send failure: %s", room, e)
                dead.append(subscriber)

        for subscriber in dead:
            await self.leave_all(subscriber)

        return delivered


def get_broadcaster(request: Request) -> Broadcaster:
    return request.app.state.broadcaster
