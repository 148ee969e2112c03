"""Activity log — append-only record of state changes.

Learn: Every write appends one row here inside the same transaction as
the change itself. After the commit, the service hands the row to
publish() which pushes the same payload to real-time subscribers.
A write that rolls back therefore never reaches a subscriber.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from waypoint.db.models import ActivityEvent
from waypoint.events.types import ACTIVITY_TOPIC
from waypoint.realtime.pubsub import Broker

logger = structlog.get_logger()


class ActivityLog:
    """Append-only activity log backed by the database."""

    def __init__(self, db: AsyncSession, broker: Optional[Broker] = None):
        self.db = db
        self.broker = broker

    async def append(
        self,
        event_type: str,
        entity: dict,
        actor_id: Optional[uuid.UUID] = None,
    ) -> ActivityEvent:
        """Append an event. Returns the created row (id assigned on flush)."""
        event = ActivityEvent(type=event_type, entity=entity, actor_id=actor_id)
        self.db.add(event)
        await self.db.flush()
        return event

    async def publish(self, event: ActivityEvent) -> None:
        """Push a committed event to subscribers of the activity topic.

        Best effort: failures are logged by the broker and never
        reach the HTTP caller.
        """
        if self.broker is None:
            return
        await self.broker.publish(
            ACTIVITY_TOPIC,
            event.type,
            event.entity,
            timestamp=event.created_at,
        )

    async def read(self, after_id: int = 0, limit: int = 100) -> list[ActivityEvent]:
        """Read events after a given position, oldest first."""
        result = await self.db.execute(
            select(ActivityEvent)
            .where(ActivityEvent.id > after_id)
            .order_by(ActivityEvent.id)
            .limit(limit)
        )
        return list(result.scalars().all())
