# =============================================================================
# File: hirechat/infra/realtime/redis_broadcast.py
# Description: BroadcastPort over Redis Pub/Sub (typing signals)
# =============================================================================

"""
RedisBroadcastChannel - ephemeral room signals over Redis Pub/Sub

Pattern (redis-py asyncio):
- PUBLISH through the shared client
- SUBSCRIBE through client.pubsub() (same connection pool)
- One listener task, started on the first join, dispatching to the
  in-process handlers of each channel

Delivery is fire-and-forget (at-most-once); nothing is persisted.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

import redis.asyncio as redis
from redis.exceptions import RedisError

from hirechat.chat.ports.realtime_ports import BroadcastHandler
from hirechat.common.exceptions.exceptions import ChangeFeedError
from hirechat.config.redis_config import RedisConfig, get_redis_config

log = logging.getLogger("hirechat.infra.redis_broadcast")


class BroadcastJSONEncoder(json.JSONEncoder):
    """JSON encoder for broadcast payloads that handles UUID, datetime, Decimal"""

    def default(self, obj):
        if isinstance(obj, UUID):
            return str(obj)
        elif isinstance(obj, datetime):
            return obj.isoformat()
        elif isinstance(obj, Decimal):
            return str(obj)
        return super().default(obj)


def _as_text(value: Any) -> str:
    return value.decode('utf-8') if isinstance(value, bytes) else value


class BroadcastSubscription:
    """Handle for one handler joined to one channel"""

    def __init__(self, bus: 'RedisBroadcastChannel', channel: str, handler: BroadcastHandler):
        self._bus = bus
        self._channel = channel
        self._handler = handler
        self._active = True

    async def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        await self._bus.leave(self._channel, self._handler)


class RedisBroadcastChannel:
    """
    Example Usage:
        ```python
        bus = RedisBroadcastChannel.from_config()
        sub = await bus.join("room:p1:s1", on_typing)
        await bus.publish("room:p1:s1", {"event": "typing", "user_id": "u1", "typing": True})
        await sub.unsubscribe()
        await bus.close()
        ```
    """

    def __init__(self, redis_client: Any, config: Optional[RedisConfig] = None):
        if not redis_client:
            raise ValueError("redis_client is required")
        self.redis_client = redis_client
        self._config = config or get_redis_config()
        self._prefix = self._config.channel_prefix

        self.pubsub: Optional[Any] = None  # redis.asyncio.client.PubSub
        self._handlers: Dict[str, List[BroadcastHandler]] = {}
        self._listener_task: Optional[asyncio.Task] = None
        self._running = False

        self._consecutive_errors = 0
        self.messages_published = 0
        self.messages_received = 0

    @classmethod
    def from_config(cls, config: Optional[RedisConfig] = None) -> 'RedisBroadcastChannel':
        config = config or get_redis_config()
        client = redis.from_url(config.url.get_secret_value(), decode_responses=True)
        return cls(client, config)

    def _channel(self, channel: str) -> str:
        return f"{self._prefix}{channel}"

    async def publish(self, channel: str, payload: Dict[str, Any]) -> None:
        message = json.dumps(payload, cls=BroadcastJSONEncoder)
        try:
            await self.redis_client.publish(self._channel(channel), message)
        except RedisError as error:
            raise ChangeFeedError(f"Publish to {channel} failed: {error}") from error
        self.messages_published += 1
        log.debug(f"Published {len(message)}B to {channel}")

    async def join(self, channel: str, handler: BroadcastHandler) -> BroadcastSubscription:
        full_channel = self._channel(channel)
        try:
            if self.pubsub is None:
                self.pubsub = self.redis_client.pubsub(ignore_subscribe_messages=True)
            if full_channel not in self._handlers:
                await self.pubsub.subscribe(full_channel)
                log.info(f"Subscribed to broadcast channel {full_channel}")
        except RedisError as error:
            raise ChangeFeedError(f"Join {channel} failed: {error}") from error

        self._handlers.setdefault(full_channel, []).append(handler)

        if self._listener_task is None or self._listener_task.done():
            self._running = True
            self._listener_task = asyncio.create_task(self._listen_loop(), name="redis-broadcast-listener")
        return BroadcastSubscription(self, channel, handler)

    async def leave(self, channel: str, handler: BroadcastHandler) -> None:
        full_channel = self._channel(channel)
        handlers = self._handlers.get(full_channel, [])
        if handler in handlers:
            handlers.remove(handler)
        if handlers or full_channel not in self._handlers:
            return
        del self._handlers[full_channel]
        try:
            await self.pubsub.unsubscribe(full_channel)
            log.info(f"Unsubscribed from broadcast channel {full_channel}")
        except RedisError as error:
            log.warning(f"Unsubscribe from {full_channel} failed: {error}")

    async def close(self) -> None:
        self._running = False
        if self._listener_task is not None:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None
        if self.pubsub is not None:
            await self.pubsub.aclose()
            self.pubsub = None
        self._handlers.clear()
        await self.redis_client.aclose()

    async def _listen_loop(self) -> None:
        log.info("Broadcast listener loop started")
        while self._running:
            try:
                message = await self.pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=self._config.listener_poll_timeout,
                )
                if message and message.get('type') == 'message':
                    self.process_message(message)
                self._consecutive_errors = 0
            except asyncio.CancelledError:
                log.info("Broadcast listener loop cancelled")
                raise
            except (RedisError, OSError) as error:
                self._consecutive_errors += 1
                delay = min(
                    self._config.reconnect_delay * (1.5 ** (self._consecutive_errors - 1)),
                    self._config.max_reconnect_delay,
                )
                delay = max(0.1, delay + delay * 0.2 * (2 * random.random() - 1))
                log.error(
                    f"Broadcast listener error (attempt {self._consecutive_errors}): {error}. "
                    f"Retrying in {delay:.2f}s..."
                )
                await asyncio.sleep(delay)

    def process_message(self, message: Dict[str, Any]) -> int:
        """Decode one pub/sub message and run its channel handlers."""
        channel = _as_text(message['channel'])
        try:
            payload = json.loads(_as_text(message['data']))
        except (TypeError, ValueError) as error:
            log.error(f"Failed to deserialize broadcast on {channel}: {error}")
            return 0

        handlers = list(self._handlers.get(channel, []))
        if not handlers:
            log.debug(f"No handler for channel: {channel}")
            return 0

        self.messages_received += 1
        for handler in handlers:
            try:
                handler(payload)
            except Exception as error:
                log.error(f"Broadcast handler on {channel} failed: {error}", exc_info=True)
        return len(handlers)
