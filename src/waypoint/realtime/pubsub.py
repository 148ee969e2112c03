"""Topic broker — the process-wide subscriber registry.

Learn: Pub/sub here is fire-and-forget. If no one is listening, the
frame is lost. That's fine for real-time UI updates (the client can
always replay GET /activity to catch up).

Each Subscription moves connecting → open → closed. Only open
subscriptions are in the registry and only they receive frames.
Delivery is a non-blocking put onto a bounded queue; a subscriber
that falls behind loses frames rather than slowing the publisher.

Redis channel naming: waypoint:events:{topic}
"""

import asyncio
import enum
import json
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import redis.asyncio as aioredis
import structlog

from waypoint.config import settings

logger = structlog.get_logger()

CHANNEL_PREFIX = "waypoint:events:"

# Seconds before the relay re-subscribes after losing Redis; doubles up to the max
RELAY_BACKOFF_INITIAL = 0.5
RELAY_BACKOFF_MAX = 30.0

# Queued after the last frame so a waiting receive() wakes up on close
_CLOSED = object()


class SubscriptionState(str, enum.Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class SubscriptionClosed(Exception):
    """Raised by Subscription.receive() once the subscription is closed."""


def build_frame(
    event_type: str,
    entity: dict[str, Any],
    timestamp: Optional[datetime] = None,
) -> dict[str, Any]:
    """The wire frame: {type, entity, timestamp}."""
    ts = timestamp or datetime.now(timezone.utc)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return {"type": event_type, "entity": entity, "timestamp": ts.isoformat()}


class Subscription:
    """One consumer of one topic."""

    def __init__(self, broker: "Broker", topic: str, queue_size: int):
        self.broker = broker
        self.topic = topic
        self.state = SubscriptionState.CONNECTING
        self.dropped = 0
        # One extra slot so the close marker always fits
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size + 1)
        self._capacity = queue_size
        self._marker_taken = False

    @property
    def is_open(self) -> bool:
        return self.state is SubscriptionState.OPEN

    def deliver(self, frame: dict[str, Any]) -> bool:
        """Queue a frame without blocking. False if closed or full."""
        if not self.is_open:
            return False
        if self._queue.qsize() >= self._capacity:
            self.dropped += 1
            logger.warning(
                "waypoint.broker.frame_dropped",
                topic=self.topic,
                type=frame.get("type"),
                dropped=self.dropped,
            )
            return False
        self._queue.put_nowait(frame)
        return True

    async def receive(self) -> dict[str, Any]:
        """Wait for the next frame. Raises SubscriptionClosed after close."""
        if self.state is SubscriptionState.CLOSED and self._queue.empty():
            raise SubscriptionClosed(self.topic)
        frame = await self._queue.get()
        if frame is _CLOSED:
            self._marker_taken = True
            raise SubscriptionClosed(self.topic)
        return frame

    def pending(self) -> int:
        """Frames waiting to be received."""
        n = self._queue.qsize()
        if self.state is SubscriptionState.CLOSED and not self._marker_taken:
            n -= 1
        return n

    async def close(self) -> None:
        await self.broker.unsubscribe(self)

    def _mark_closed(self) -> None:
        self.state = SubscriptionState.CLOSED
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[dict[str, Any]]:
        while True:
            try:
                yield await self.receive()
            except SubscriptionClosed:
                return


class Broker:
    """Topic-keyed registry of open subscriptions.

    Learn: add/remove go through a single asyncio.Lock; publishers
    iterate over a snapshot, so a subscriber leaving mid-publish can't
    corrupt the iteration.
    """

    def __init__(
        self,
        queue_size: int = 100,
        redis: Optional[aioredis.Redis] = None,
        relay_backoff: float = RELAY_BACKOFF_INITIAL,
    ):
        self.queue_size = queue_size
        self._topics: dict[str, set[Subscription]] = {}
        self._lock = asyncio.Lock()
        self._redis = redis
        self._pubsub = None
        self._relay_task: Optional[asyncio.Task] = None
        self._relay_live = False
        self._relay_backoff = relay_backoff
        self._closed = False

    @property
    def uses_redis(self) -> bool:
        return self._redis is not None

    @property
    def relay_live(self) -> bool:
        """True while the Redis relay is subscribed and listening."""
        return self._relay_live

    # ─── Lifecycle ───────────────────────────────────────

    async def start(self) -> None:
        """Start relaying Redis messages to local subscribers (Redis mode only).

        Learn: If the first psubscribe fails the relay task keeps retrying
        in the background; until it succeeds, publish() delivers locally.
        """
        if self._redis is None or self._relay_task is not None:
            return
        try:
            await self._connect_relay()
        except Exception as e:
            logger.warning("waypoint.broker.relay_connect_failed", error=str(e))
            await self._drop_pubsub()
        self._relay_task = asyncio.create_task(self._relay())

    async def close(self) -> None:
        """Close every subscription and stop the Redis relay."""
        self._closed = True
        async with self._lock:
            subs = [s for topic_subs in self._topics.values() for s in topic_subs]
            self._topics.clear()
        for sub in subs:
            sub._mark_closed()

        if self._relay_task is not None:
            self._relay_task.cancel()
            try:
                await self._relay_task
            except asyncio.CancelledError:
                pass
            self._relay_task = None
        await self._drop_pubsub()
        logger.info("waypoint.broker.closed", subscriptions=len(subs))

    # ─── Registry ────────────────────────────────────────

    async def subscribe(self, topic: str) -> Subscription:
        """Open a subscription on a topic."""
        if self._closed:
            raise RuntimeError("Broker is closed")
        sub = Subscription(self, topic, self.queue_size)
        async with self._lock:
            # close() may have run while this call waited for the lock
            if self._closed:
                raise RuntimeError("Broker is closed")
            self._topics.setdefault(topic, set()).add(sub)
            sub.state = SubscriptionState.OPEN
        logger.debug("waypoint.broker.subscribed", topic=topic)
        return sub

    async def unsubscribe(self, sub: Subscription) -> None:
        """Close a subscription. Idempotent."""
        async with self._lock:
            if sub.state is SubscriptionState.CLOSED:
                return
            subs = self._topics.get(sub.topic)
            if subs is not None:
                subs.discard(sub)
                if not subs:
                    del self._topics[sub.topic]
            sub._mark_closed()
        logger.debug("waypoint.broker.unsubscribed", topic=sub.topic)

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    # ─── Publishing ──────────────────────────────────────

    async def publish(
        self,
        topic: str,
        event_type: str,
        entity: dict[str, Any],
        timestamp: Optional[datetime] = None,
    ) -> None:
        """Publish an event to a topic. Never raises.

        Learn: While the relay is live the frame goes out on the Redis
        channel and comes back through _relay(), so every process (this
        one included) delivers it exactly once. If the relay is down or
        the Redis publish fails, the frame is delivered locally so this
        process's subscribers still see it.
        """
        frame = build_frame(event_type, entity, timestamp)
        if self._redis is not None and self._relay_live:
            try:
                await self._redis.publish(
                    f"{CHANNEL_PREFIX}{topic}", json.dumps(frame, default=str)
                )
                return
            except Exception as e:
                logger.warning(
                    "waypoint.broker.redis_publish_failed",
                    topic=topic,
                    type=event_type,
                    error=str(e),
                )
        self.deliver_local(topic, frame)

    def deliver_local(self, topic: str, frame: dict[str, Any]) -> int:
        """Hand a frame to this process's subscribers. Returns how many took it."""
        delivered = 0
        for sub in list(self._topics.get(topic, ())):
            try:
                if sub.deliver(frame):
                    delivered += 1
            except Exception as e:
                logger.warning("waypoint.broker.delivery_failed", topic=topic, error=str(e))
        return delivered

    # ─── Redis relay ─────────────────────────────────────

    async def _connect_relay(self) -> None:
        self._pubsub = self._redis.pubsub()
        await self._pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
        self._relay_live = True
        logger.info("waypoint.broker.relay_subscribed")

    async def _drop_pubsub(self) -> None:
        self._relay_live = False
        if self._pubsub is None:
            return
        pubsub, self._pubsub = self._pubsub, None
        try:
            await pubsub.punsubscribe()
            await pubsub.aclose()
        except Exception as e:
            logger.debug("waypoint.broker.pubsub_close_failed", error=str(e))

    def _handle_message(self, message: dict) -> None:
        if message["type"] != "pmessage":
            return
        channel = message["channel"]
        topic = channel[len(CHANNEL_PREFIX):]
        try:
            frame = json.loads(message["data"])
        except (TypeError, json.JSONDecodeError):
            logger.warning("waypoint.broker.bad_frame", channel=channel)
            return
        self.deliver_local(topic, frame)

    async def _relay(self) -> None:
        """Forward Redis messages to local subscribers, reconnecting on failure.

        Learn: A dropped connection ends listen() with an error. The relay
        marks itself down (publish() switches to local delivery), then
        re-subscribes with exponential backoff until Redis answers again.
        """
        backoff = self._relay_backoff
        while True:
            try:
                if self._pubsub is None:
                    await self._connect_relay()
                async for message in self._pubsub.listen():
                    backoff = self._relay_backoff
                    self._handle_message(message)
                raise ConnectionError("pubsub stream ended")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("waypoint.broker.relay_lost", error=str(e), retry_in=backoff)
                await self._drop_pubsub()
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, RELAY_BACKOFF_MAX)


# ─── Process-wide instance ───────────────────────────────
# Initialized in the app lifespan, closed on shutdown.

_broker: Optional[Broker] = None


async def init_broker(redis_url: Optional[str] = None) -> Broker:
    """Create the process-wide broker, with Redis fan-out if reachable."""
    global _broker
    if _broker is not None:
        await _broker.close()

    url = settings.redis_url if redis_url is None else redis_url
    redis = None
    if url:
        try:
            redis = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
            await redis.ping()
            logger.info("waypoint.broker.redis_connected", url=url)
        except Exception as e:
            logger.warning("waypoint.broker.redis_unavailable", error=str(e))
            if redis is not None:
                await redis.aclose()
            redis = None

    _broker = Broker(queue_size=settings.broker_queue_size, redis=redis)
    await _broker.start()
    return _broker


async def close_broker() -> None:
    """Close the process-wide broker and its Redis connection."""
    global _broker
    if _broker is None:
        return
    redis = _broker._redis
    await _broker.close()
    if redis is not None:
        await redis.aclose()
    _broker = None


def get_broker() -> Broker:
    """Get the broker (must be initialized first)."""
    if _broker is None:
        raise RuntimeError("Broker not initialized. Call init_broker() first.")
    return _broker


def get_broker_optional() -> Optional[Broker]:
    """FastAPI dependency — the broker, or None before startup."""
    return _broker


def get_redis() -> aioredis.Redis:
    """The broker's Redis connection. Raises if running without Redis."""
    broker = get_broker()
    if broker._redis is None:
        raise RuntimeError("Redis not configured")
    return broker._redis
