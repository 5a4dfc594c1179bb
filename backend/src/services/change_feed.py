"""
Change Feed transports.

Both transports key a subscription by table and owner filter and deliver one
``ChangeEvent`` per committed row change. ``RedisChangeFeed`` fans events out
across processes over Redis pub/sub; ``LocalChangeFeed`` is the in-process
broker used when Redis is disabled.
"""
import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Collection

from pydantic import ValidationError
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from core.errors import SubscriptionFailureError
from core.redis import RedisClient
from schemas.bookmark import ChangeEvent, EventType
from services.interfaces import ChangeHandler

logger = logging.getLogger(__name__)

# Seconds a reader waits for a message before re-checking for close
READ_TIMEOUT = 1.0


def channel_name(table: str, user_id: str) -> str:
    """Topic for changes of ``table`` rows owned by ``user_id``."""
    return f"realtime:{table}:user_id=eq.{user_id}"


class Subscription:
    """An open subscription; delivers matching events until closed."""

    def __init__(
        self,
        topic: str,
        event_types: Collection[EventType],
        handler: ChangeHandler,
    ) -> None:
        self._topic = topic
        self._event_types = frozenset(event_types)
        self._handler = handler
        self._closed = False

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def deliver(self, event: ChangeEvent) -> None:
        """Pass ``event`` to the handler unless closed or filtered out."""
        if self._closed or event.event_type not in self._event_types:
            return
        self._handler(event)


class LocalChangeFeed:
    """In-process Change Feed."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, set[Subscription]] = {}

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, ()))

    @contextlib.asynccontextmanager
    async def subscribe(
        self,
        table: str,
        user_id: str,
        event_types: Collection[EventType],
        handler: ChangeHandler,
    ) -> AsyncIterator[Subscription]:
        topic = channel_name(table, user_id)
        subscription = Subscription(topic, event_types, handler)
        self._subscriptions.setdefault(topic, set()).add(subscription)
        try:
            yield subscription
        finally:
            subscription.close()
            subscribers = self._subscriptions.get(topic)
            if subscribers is not None:
                subscribers.discard(subscription)
                if not subscribers:
                    del self._subscriptions[topic]

    async def publish(self, event: ChangeEvent) -> None:
        if event.user_id is None:
            logger.warning("change_event_unroutable", extra={"event_type": event.event_type})
            return
        topic = channel_name(event.table, event.user_id)
        for subscription in list(self._subscriptions.get(topic, ())):
            subscription.deliver(event)


class RedisChangeFeed:
    """Change Feed over Redis pub/sub; events travel as JSON."""

    def __init__(self, redis_client: RedisClient) -> None:
        self._redis = redis_client

    @contextlib.asynccontextmanager
    async def subscribe(
        self,
        table: str,
        user_id: str,
        event_types: Collection[EventType],
        handler: ChangeHandler,
    ) -> AsyncIterator[Subscription]:
        topic = channel_name(table, user_id)
        pubsub = self._redis.pubsub()
        if pubsub is None:
            raise SubscriptionFailureError("Redis unavailable")
        try:
            await pubsub.subscribe(topic)
        except RedisError as e:
            await pubsub.aclose()
            raise SubscriptionFailureError(f"Redis SUBSCRIBE failed: {e}") from e

        subscription = Subscription(topic, event_types, handler)
        reader = asyncio.create_task(self._read(pubsub, subscription), name=f"feed-{topic}")
        try:
            yield subscription
        finally:
            subscription.close()
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
            try:
                await pubsub.unsubscribe(topic)
            except RedisError as e:
                logger.warning("Redis UNSUBSCRIBE failed: %s", e)
            await pubsub.aclose()

    async def _read(self, pubsub: PubSub, subscription: Subscription) -> None:
        try:
            while not subscription.closed:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=READ_TIMEOUT,
                )
                if message is None or message.get("type") != "message":
                    continue
                try:
                    event = ChangeEvent.model_validate_json(message["data"])
                except ValidationError as e:
                    logger.warning(
                        "change_event_invalid",
                        extra={"topic": subscription.topic, "error": str(e)},
                    )
                    continue
                subscription.deliver(event)
        except RedisError as e:
            # Feed lost; treated like an absent feed until the next bootstrap
            logger.warning(
                "change_feed_lost", extra={"topic": subscription.topic, "error": str(e)},
            )

    async def publish(self, event: ChangeEvent) -> None:
        if event.user_id is None:
            logger.warning("change_event_unroutable", extra={"event_type": event.event_type})
            return
        topic = channel_name(event.table, event.user_id)
        if not await self._redis.publish(topic, event.model_dump_json()):
            logger.warning("change_event_publish_failed", extra={"topic": topic})
