"""Profile-scoped "tickets changed" notification channels."""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class ChannelUnavailableError(RuntimeError):
    """The push channel cannot be reached."""


@dataclass(slots=True)
class ChangeEvent:
    """Opaque change notice; consumers only read ``profile_id``."""

    profile_id: str
    payload: dict[str, Any] = field(default_factory=dict)


class ChangeChannel(Protocol):
    async def publish(self, profile_id: str, payload: dict[str, Any] | None = None) -> None: ...

    def subscribe(self, profile_id: str, *, heartbeat: float | None = None) -> AsyncIterator[ChangeEvent | None]:
        """Yield events for ``profile_id``.

        ``None`` is yielded once the subscription is live and again on every
        idle heartbeat tick.
        """
        ...

    async def close(self) -> None: ...


class InMemoryChangeChannel:
    """In-process fan-out used when no Redis server is configured."""

    def __init__(self) -> None:
        self._subscribers: dict[str, set[asyncio.Queue[ChangeEvent | None]]] = {}
        self.available = True

    async def publish(self, profile_id: str, payload: dict[str, Any] | None = None) -> None:
        if not self.available:
            raise ChannelUnavailableError("in-memory channel is offline")
        event = ChangeEvent(profile_id=profile_id, payload=dict(payload or {}))
        for queue in list(self._subscribers.get(profile_id, ())):
            queue.put_nowait(event)

    async def subscribe(
        self, profile_id: str, *, heartbeat: float | None = None
    ) -> AsyncIterator[ChangeEvent | None]:
        if not self.available:
            raise ChannelUnavailableError("in-memory channel is offline")
        queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue()
        self._subscribers.setdefault(profile_id, set()).add(queue)
        try:
            yield None
            while True:
                if heartbeat is None:
                    event = await queue.get()
                else:
                    try:
                        event = await asyncio.wait_for(queue.get(), timeout=heartbeat)
                    except asyncio.TimeoutError:
                        yield None
                        continue
                if event is None:
                    return
                yield event
        finally:
            subscribers = self._subscribers.get(profile_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[profile_id]

    def subscriber_count(self, profile_id: str) -> int:
        return len(self._subscribers.get(profile_id, ()))

    def disconnect(self) -> None:
        """Take the channel offline and end every open subscription."""

        self.available = False
        for queues in self._subscribers.values():
            for queue in queues:
                queue.put_nowait(None)

    async def close(self) -> None:
        self.disconnect()


class RedisChangeChannel:
    """Redis pub/sub channel, one channel per profile."""

    CHANNEL_PREFIX = "queue:update"

    def __init__(self, url: str | None = None, *, client: aioredis.Redis | None = None) -> None:
        if client is None and not url:
            raise ValueError("either url or client is required")
        self._client = client or aioredis.from_url(url, decode_responses=True)
        self._owns_client = client is None

    @classmethod
    def channel_name(cls, profile_id: str) -> str:
        return f"{cls.CHANNEL_PREFIX}:{profile_id}"

    async def publish(self, profile_id: str, payload: dict[str, Any] | None = None) -> None:
        message = json.dumps({"type": "queue_update", "profileId": profile_id, **(payload or {})})
        try:
            await self._client.publish(self.channel_name(profile_id), message)
        except RedisError as exc:
            raise ChannelUnavailableError(f"redis publish failed: {exc}") from exc

    async def subscribe(
        self, profile_id: str, *, heartbeat: float | None = None
    ) -> AsyncIterator[ChangeEvent | None]:
        name = self.channel_name(profile_id)
        pubsub = self._client.pubsub()
        try:
            await pubsub.subscribe(name)
        except RedisError as exc:
            await pubsub.aclose()
            raise ChannelUnavailableError(f"redis subscribe failed: {exc}") from exc

        poll = min(heartbeat, 5.0) if heartbeat else 5.0
        loop = asyncio.get_running_loop()
        last_seen = loop.time()
        try:
            yield None
            while True:
                try:
                    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=poll)
                except RedisError as exc:
                    raise ChannelUnavailableError(f"redis subscription lost: {exc}") from exc
                if message is None or message.get("type") != "message":
                    if heartbeat is not None and loop.time() - last_seen >= heartbeat:
                        last_seen = loop.time()
                        yield None
                    continue
                last_seen = loop.time()
                yield ChangeEvent(profile_id=profile_id, payload=_decode(message.get("data")))
        finally:
            try:
                await pubsub.unsubscribe(name)
                await pubsub.aclose()
            except RedisError as exc:
                logger.warning("Failed to close redis subscription %s: %s", name, exc)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _decode(data: Any) -> dict[str, Any]:
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    if isinstance(data, str):
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError:
            return {"raw": data}
        return parsed if isinstance(parsed, dict) else {"raw": parsed}
    return {}


__all__ = [
    "ChangeChannel",
    "ChangeEvent",
    "ChannelUnavailableError",
    "InMemoryChangeChannel",
    "RedisChangeChannel",
]
