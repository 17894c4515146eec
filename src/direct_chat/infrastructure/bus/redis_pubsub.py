"""Redis Pub/Sub broker session; destinations are used as channel names."""
from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from direct_chat.application.exceptions import BrokerConnectionError
from direct_chat.application.ports.bus import MessageHandler

logger = logging.getLogger(__name__)


class RedisSubscription:
    def __init__(self, transport: RedisPubSubTransport, sub_id: int, destination: str) -> None:
        self._transport = transport
        self._id = sub_id
        self._destination = destination

    @property
    def destination(self) -> str:
        return self._destination

    def unsubscribe(self) -> None:
        self._transport._unsubscribe(self._id)


class RedisPubSubTransport:
    """Implements application.ports.bus.BrokerTransport on top of Redis Pub/Sub."""

    def __init__(
        self,
        url: str,
        *,
        heartbeat_ms: int = 4000,
        connect_timeout: float = 10.0,
        poll_interval: float = 0.1,
    ) -> None:
        self._url = url
        self._heartbeat = heartbeat_ms / 1000
        self._connect_timeout = connect_timeout
        self._poll_interval = poll_interval
        self._redis: aioredis.Redis | None = None
        self._pubsub: Any = None
        self._commands: asyncio.Queue[tuple[str, ...]] | None = None
        self._handlers: dict[int, tuple[str, MessageHandler]] = {}
        self._ids = itertools.count()

    @property
    def connected(self) -> bool:
        return self._commands is not None

    async def open(self) -> None:
        redis = aioredis.from_url(
            self._url,
            decode_responses=True,
            socket_connect_timeout=self._connect_timeout,
        )
        try:
            await redis.ping()
        except (RedisError, OSError) as exc:
            await redis.aclose()
            raise BrokerConnectionError(f"Cannot reach Redis at {self._url}: {exc}") from exc

        self._redis = redis
        self._pubsub = redis.pubsub(ignore_subscribe_messages=True)
        self._commands = asyncio.Queue()
        logger.info("Redis Pub/Sub session open")

    async def run(self) -> None:
        if self._redis is None or self._commands is None:
            raise BrokerConnectionError("Redis session is not open")

        tasks = [
            asyncio.create_task(self._listen(), name="redis-pubsub-listener"),
            asyncio.create_task(self._execute(self._commands), name="redis-pubsub-commands"),
        ]
        if self._heartbeat:
            tasks.append(asyncio.create_task(self._ping_loop(), name="redis-pubsub-heartbeat"))

        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            self._commands = None
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        for task in done:
            task.result()

    async def _listen(self) -> None:
        while True:
            if not self._pubsub.subscribed:
                await asyncio.sleep(self._poll_interval)
                continue
            try:
                message = await self._pubsub.get_message(timeout=self._poll_interval)
            except (RedisError, OSError) as exc:
                raise BrokerConnectionError(f"Connection lost: {exc}") from exc
            if message is None or message["type"] != "message":
                continue
            self._dispatch(message["channel"], message["data"])

    async def _execute(self, commands: asyncio.Queue[tuple[str, ...]]) -> None:
        while True:
            command, *args = await commands.get()
            try:
                if command == "subscribe":
                    await self._pubsub.subscribe(*args)
                elif command == "unsubscribe":
                    await self._pubsub.unsubscribe(*args)
                else:
                    await self._redis.publish(*args)
            except (RedisError, OSError) as exc:
                raise BrokerConnectionError(f"Redis {command} failed: {exc}") from exc

    async def _ping_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat)
            try:
                async with asyncio.timeout(self._heartbeat):
                    await self._redis.ping()
            except (RedisError, OSError, TimeoutError) as exc:
                raise BrokerConnectionError("Redis did not answer heart-beat") from exc

    def _dispatch(self, channel: str, data: str) -> None:
        handlers = [h for dest, h in self._handlers.values() if dest == channel]
        if not handlers:
            logger.debug("Dropping message for inactive channel %s", channel)
        for handler in handlers:
            try:
                handler(data)
            except Exception:
                logger.exception("Error processing pubsub message on %s", channel)

    def _listening_to(self, destination: str) -> bool:
        return any(dest == destination for dest, _ in self._handlers.values())

    def subscribe(self, destination: str, handler: MessageHandler) -> RedisSubscription:
        if self._commands is None:
            raise BrokerConnectionError("Cannot subscribe while disconnected")
        first = not self._listening_to(destination)
        sub_id = next(self._ids)
        self._handlers[sub_id] = (destination, handler)
        if first:
            self._commands.put_nowait(("subscribe", destination))
        return RedisSubscription(self, sub_id, destination)

    def _unsubscribe(self, sub_id: int) -> None:
        entry = self._handlers.pop(sub_id, None)
        if entry is None:
            return
        destination, _ = entry
        if self._commands is not None and not self._listening_to(destination):
            self._commands.put_nowait(("unsubscribe", destination))

    def publish(self, destination: str, body: str) -> None:
        if self._commands is None:
            raise BrokerConnectionError("Cannot publish while disconnected")
        self._commands.put_nowait(("publish", destination, body))

    async def close(self) -> None:
        self._commands = None
        self._handlers.clear()
        pubsub, self._pubsub = self._pubsub, None
        redis, self._redis = self._redis, None
        if pubsub is not None:
            try:
                await pubsub.aclose()
            except (RedisError, OSError):
                logger.debug("Error closing pubsub", exc_info=True)
        if redis is not None:
            await redis.aclose()
