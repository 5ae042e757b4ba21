"""
Live change-event subscription

Backends announce one event per entity mutation. The feed subscribes once per
source collection plus the synthetic `messages_deleted` broadcast.

- LocalChangeHub: in-process dispatch (tests, single-process deployments)
- RedisChangeSubscription: same dispatch fed by Redis pub/sub, channel
  `<prefix><entity>`, JSON payload `{"action": ..., "record": {...}}`
"""

import asyncio
import json
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from schoolfeed.core.logging_config import logger
from schoolfeed.core.redis_client import RedisClient
from schoolfeed.models.notification import NotificationType

ENTITY_MESSAGES = "messages"
ENTITY_SCHEDULED_ITEMS = "scheduled_items"
ENTITY_MATERIALS = "materials"
ENTITY_MESSAGES_DELETED = "messages_deleted"

# Entities whose mutations trigger a feed recomputation
SOURCE_ENTITIES: Dict[str, NotificationType] = {
    ENTITY_MESSAGES: NotificationType.MESSAGE,
    ENTITY_SCHEDULED_ITEMS: NotificationType.SCHEDULED_ITEM,
    ENTITY_MATERIALS: NotificationType.MATERIAL,
}


@dataclass
class ChangeEvent:
    """One backend mutation notice"""
    entity: str
    action: str = "*"
    record: Any = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        return json.dumps({"action": self.action, "record": self.record})


ChangeHandler = Callable[[ChangeEvent], Any]  # sync or coroutine function
Unsubscribe = Callable[[], None]


class ChangeSubscription(ABC):

    @abstractmethod
    def subscribe(self, entity: str, handler: ChangeHandler) -> Unsubscribe:
        """Register `handler` for `entity`; the returned callable detaches it"""

    async def start(self) -> None:
        """Begin receiving events"""

    async def close(self) -> None:
        """Stop receiving events"""


class LocalChangeHub(ChangeSubscription):
    """In-process change dispatch"""

    def __init__(self):
        self._handlers: Dict[str, List[ChangeHandler]] = defaultdict(list)
        self._event_count = 0

    def subscribe(self, entity: str, handler: ChangeHandler) -> Unsubscribe:
        self._handlers[entity].append(handler)
        logger.debug(f"[ChangeHub] Registered handler for {entity}")

        def unsubscribe() -> None:
            handlers = self._handlers.get(entity, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def handler_count(self, entity: str) -> int:
        return len(self._handlers.get(entity, []))

    async def dispatch(self, event: ChangeEvent) -> None:
        """Deliver to every handler of the event's entity; handler errors are logged"""
        self._event_count += 1
        for handler in list(self._handlers.get(event.entity, [])):
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"[ChangeHub] Handler error for {event.entity}: {e}")

    async def publish(self, entity: str, action: str = "*", record: Any = None) -> None:
        await self.dispatch(ChangeEvent(entity=entity, action=action, record=record))


class RedisChangeSubscription(LocalChangeHub):
    """Change events carried over Redis pub/sub"""

    def __init__(
        self,
        client: RedisClient,
        channel_prefix: str = "schoolfeed:changes:",
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
    ):
        super().__init__()
        self.client = client
        self.channel_prefix = channel_prefix
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.reconnects = 0
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None

    def channel_for(self, entity: str) -> str:
        return f"{self.channel_prefix}{entity}"

    async def start(self) -> None:
        if self._listener is not None:
            return
        await self._subscribe()
        self._listener = asyncio.create_task(self._listen())
        logger.info(f"[RedisChangeSubscription] listening on {self.channel_prefix}*")

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._pubsub is not None:
            try:
                await self._pubsub.punsubscribe()
            except Exception as e:
                logger.warning(f"[RedisChangeSubscription] punsubscribe failed: {e}")
            await self._drop_pubsub()

    async def publish(self, entity: str, action: str = "*", record: Any = None) -> None:
        """Announce a change to every subscriber process, this one included"""
        event = ChangeEvent(entity=entity, action=action, record=record)
        await self.client.publish(self.channel_for(entity), event.to_json())

    def parse_message(self, message: Dict[str, Any]) -> Optional[ChangeEvent]:
        """pub/sub message -> ChangeEvent, None when it is not one of ours"""
        if message.get("type") not in ("message", "pmessage"):
            return None
        channel = message.get("channel") or ""
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")
        if not channel.startswith(self.channel_prefix):
            return None

        entity = channel[len(self.channel_prefix):]
        try:
            payload = json.loads(message.get("data") or "{}")
        except (TypeError, ValueError):
            logger.warning(f"[RedisChangeSubscription] undecodable payload on {channel}")
            return None
        if not isinstance(payload, dict):
            payload = {"record": payload}
        return ChangeEvent(entity=entity, action=payload.get("action", "*"), record=payload.get("record"))

    async def _subscribe(self) -> None:
        self._pubsub = self.client.pubsub()
        await self._pubsub.psubscribe(f"{self.channel_prefix}*")

    async def _drop_pubsub(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.close()
        except Exception as e:
            logger.debug(f"[RedisChangeSubscription] closing broken pub/sub: {e}")

    async def _listen(self) -> None:
        """
        Dispatch pub/sub messages until cancelled.

        A dropped connection is re-established with exponential backoff
        (reconnect_delay doubling up to max_reconnect_delay); the delay
        resets once a message arrives again.
        """
        delay = self.reconnect_delay
        while True:
            try:
                if self._pubsub is None:
                    await self._subscribe()
                    self.reconnects += 1
                    logger.info(f"[RedisChangeSubscription] resubscribed to {self.channel_prefix}* (attempt {self.reconnects})")
                async for message in self._pubsub.listen():
                    delay = self.reconnect_delay
                    event = self.parse_message(message)
                    if event is not None:
                        await self.dispatch(event)
                logger.warning("[RedisChangeSubscription] pub/sub stream ended")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.log_error_with_context(e, context="RedisChangeSubscription._listen")

            await self._drop_pubsub()
            logger.warning(f"[RedisChangeSubscription] reconnecting in {delay:.1f}s")
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_reconnect_delay)
