"""Place and comment services — the resource controllers.

Learn: Every mutating method follows the same shape:
1. Read what it depends on (get_or_404) — references must exist
2. Check ownership (Forbidden if the caller isn't the owner/author)
3. Write, append an activity event, commit
4. Publish the event (after commit, best effort)

Listing is deterministic: every sort key is followed by the primary
key as a tie-break, so the same page parameters always return the
same slice of an unchanged table.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Optional

import structlog
from sqlalchemy import Select, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from waypoint.auth.dependencies import CurrentIdentity
from waypoint.db.models import Comment, Place, User
from waypoint.db.repository import Repository
from waypoint.errors import Forbidden, NotFound, ValidationError
from waypoint.events.store import ActivityLog
from waypoint.events.types import (
    COMMENT_CREATED,
    COMMENT_DELETED,
    COMMENT_UPDATED,
    PLACE_CREATED,
    PLACE_DELETED,
    PLACE_UPDATED,
)
from waypoint.realtime.pubsub import Broker

logger = structlog.get_logger()

DEFAULT_LIMIT = 20
MAX_LIMIT = 100

PLACE_SORTS = {
    "created_at": (Place.created_at.asc(), Place.id.asc()),
    "-created_at": (Place.created_at.desc(), Place.id.desc()),
    "name": (Place.name.asc(), Place.id.asc()),
    "-name": (Place.name.desc(), Place.id.desc()),
}

COMMENT_SORTS = {
    "created_at": (Comment.created_at.asc(), Comment.id.asc()),
    "-created_at": (Comment.created_at.desc(), Comment.id.desc()),
}


@dataclass
class Page:
    """A slice of a listing plus the total number of matches."""

    items: list
    total: int
    page: int
    limit: int


def _order(sorts: dict, sort: str) -> tuple:
    try:
        return sorts[sort]
    except KeyError:
        allowed = ", ".join(sorts)
        raise ValidationError(f"Unknown sort '{sort}'. Use one of: {allowed}")


def _paginate(page: int, limit: int) -> tuple[int, int]:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= limit <= MAX_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}")
    return limit, (page - 1) * limit


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def place_summary(place: Place) -> dict:
    return {"_id": str(place.id), "name": place.name, "owner_id": str(place.owner_id)}


def comment_summary(comment: Comment) -> dict:
    return {
        "_id": str(comment.id),
        "place_id": str(comment.place_id),
        "author_id": str(comment.author_id),
    }


class PlaceService:
    """CRUD, listing and aggregation for places."""

    def __init__(self, db: AsyncSession, broker: Optional[Broker] = None):
        self.db = db
        self.places = Repository(db, Place)
        self.users = Repository(db, User, label="Owner")
        self.activity = ActivityLog(db, broker)

    # ─── Create ──────────────────────────────────────────

    async def create_place(self, caller: CurrentIdentity, data: dict[str, Any]) -> Place:
        """Create a place owned by the caller. NotFound if the owner is gone."""
        await self.users.get_or_404(caller.user_id)

        place = await self.places.add(Place(owner_id=caller.user_id, **data))
        event = await self.activity.append(
            PLACE_CREATED, place_summary(place), actor_id=caller.user_id
        )
        await self.db.commit()

        logger.info("waypoint.place.created", place_id=str(place.id))
        await self.activity.publish(event)
        return place

    # ─── Read ────────────────────────────────────────────

    async def get_place(self, place_id: uuid.UUID) -> Place:
        return await self.places.get_or_404(place_id)

    def _place_query(
        self,
        owner_id: Optional[uuid.UUID] = None,
        name: Optional[str] = None,
        q: Optional[str] = None,
    ) -> Select:
        """Learn: filters are applied only when the caller provides them."""
        query = select(Place)
        if owner_id:
            query = query.where(Place.owner_id == owner_id)
        if name:
            query = query.where(Place.name == name)
        if q:
            query = query.where(Place.name.ilike(f"%{_escape_like(q)}%", escape="\\"))
        return query

    async def list_places(
        self,
        owner_id: Optional[uuid.UUID] = None,
        name: Optional[str] = None,
        q: Optional[str] = None,
        sort: str = "-created_at",
        page: int = 1,
        limit: int = DEFAULT_LIMIT,
    ) -> Page:
        order = _order(PLACE_SORTS, sort)
        lim, offset = _paginate(page, limit)

        query = self._place_query(owner_id=owner_id, name=name, q=q)
        total = await self.places.count(query)
        items = await self.places.query(query.order_by(*order).limit(lim).offset(offset))
        return Page(items=items, total=total, page=page, limit=lim)

    async def count_by_owner(self) -> list[dict]:
        """Number of places per owner, largest first."""
        n = func.count(Place.id)
        rows = await self.places.rows(
            select(Place.owner_id, User.name, n)
            .join(User, User.id == Place.owner_id)
            .group_by(Place.owner_id, User.name)
            .order_by(n.desc(), User.name.asc())
        )
        return [
            {"owner_id": owner_id, "owner_name": owner_name, "count": count}
            for owner_id, owner_name, count in rows
        ]

    # ─── Update / delete ─────────────────────────────────

    async def _owned_place(self, caller: CurrentIdentity, place_id: uuid.UUID) -> Place:
        place = await self.places.get_or_404(place_id)
        if not caller.owns(place.owner_id):
            raise Forbidden("Only the owner can change this place")
        return place

    async def update_place(
        self, caller: CurrentIdentity, place_id: uuid.UUID, changes: dict[str, Any]
    ) -> Place:
        place = await self._owned_place(caller, place_id)

        if "name" in changes and not changes["name"]:
            raise ValidationError("name must not be empty")
        if changes.get("description", "") is None:
            changes["description"] = ""
        lat = changes.get("latitude", place.latitude)
        lng = changes.get("longitude", place.longitude)
        if (lat is None) != (lng is None):
            raise ValidationError("latitude and longitude must be given together")

        await self.places.update(place, changes)
        event = await self.activity.append(
            PLACE_UPDATED,
            {**place_summary(place), "fields": sorted(changes)},
            actor_id=caller.user_id,
        )
        await self.db.commit()

        logger.info("waypoint.place.updated", place_id=str(place.id), fields=sorted(changes))
        await self.activity.publish(event)
        return place

    async def delete_place(self, caller: CurrentIdentity, place_id: uuid.UUID) -> None:
        """Delete a place and, with it, all of its comments."""
        place = await self._owned_place(caller, place_id)
        summary = place_summary(place)

        await self.db.execute(delete(Comment).where(Comment.place_id == place.id))
        await self.places.delete(place)
        event = await self.activity.append(PLACE_DELETED, summary, actor_id=caller.user_id)
        await self.db.commit()

        logger.info("waypoint.place.deleted", place_id=summary["_id"])
        await self.activity.publish(event)


class CommentService:
    """CRUD, listing and aggregation for the comments of a place."""

    def __init__(self, db: AsyncSession, broker: Optional[Broker] = None):
        self.db = db
        self.places = Repository(db, Place)
        self.comments = Repository(db, Comment)
        self.users = Repository(db, User, label="Author")
        self.activity = ActivityLog(db, broker)

    async def create_comment(
        self, caller: CurrentIdentity, place_id: uuid.UUID, body: str
    ) -> Comment:
        """Comment on a place. NotFound (and nothing written) if the place is missing."""
        await self.places.get_or_404(place_id)
        await self.users.get_or_404(caller.user_id)

        comment = await self.comments.add(
            Comment(place_id=place_id, author_id=caller.user_id, body=body)
        )
        event = await self.activity.append(
            COMMENT_CREATED, comment_summary(comment), actor_id=caller.user_id
        )
        await self.db.commit()

        logger.info("waypoint.comment.created", comment_id=str(comment.id), place_id=str(place_id))
        await self.activity.publish(event)
        return comment

    async def get_comment(self, place_id: uuid.UUID, comment_id: uuid.UUID) -> Comment:
        await self.places.get_or_404(place_id)
        comment = await self.comments.get(comment_id)
        # A comment addressed through the wrong place doesn't exist there
        if comment is None or comment.place_id != place_id:
            raise NotFound("Comment not found")
        return comment

    async def list_comments(
        self,
        place_id: uuid.UUID,
        author_id: Optional[uuid.UUID] = None,
        sort: str = "created_at",
        page: int = 1,
        limit: int = DEFAULT_LIMIT,
    ) -> Page:
        await self.places.get_or_404(place_id)
        order = _order(COMMENT_SORTS, sort)
        lim, offset = _paginate(page, limit)

        query = select(Comment).where(Comment.place_id == place_id)
        if author_id:
            query = query.where(Comment.author_id == author_id)
        total = await self.comments.count(query)
        items = await self.comments.query(query.order_by(*order).limit(lim).offset(offset))
        return Page(items=items, total=total, page=page, limit=lim)

    async def count_by_author(self, place_id: uuid.UUID) -> list[dict]:
        await self.places.get_or_404(place_id)
        n = func.count(Comment.id)
        rows = await self.comments.rows(
            select(Comment.author_id, User.name, n)
            .join(User, User.id == Comment.author_id)
            .where(Comment.place_id == place_id)
            .group_by(Comment.author_id, User.name)
            .order_by(n.desc(), User.name.asc())
        )
        return [
            {"author_id": author_id, "author_name": author_name, "count": count}
            for author_id, author_name, count in rows
        ]

    async def _authored_comment(
        self, caller: CurrentIdentity, place_id: uuid.UUID, comment_id: uuid.UUID
    ) -> Comment:
        comment = await self.get_comment(place_id, comment_id)
        if not caller.owns(comment.author_id):
            raise Forbidden("Only the author can change this comment")
        return comment

    async def update_comment(
        self,
        caller: CurrentIdentity,
        place_id: uuid.UUID,
        comment_id: uuid.UUID,
        body: str,
    ) -> Comment:
        comment = await self._authored_comment(caller, place_id, comment_id)

        await self.comments.update(comment, {"body": body})
        event = await self.activity.append(
            COMMENT_UPDATED, comment_summary(comment), actor_id=caller.user_id
        )
        await self.db.commit()

        logger.info("waypoint.comment.updated", comment_id=str(comment.id))
        await self.activity.publish(event)
        return comment

    async def delete_comment(
        self, caller: CurrentIdentity, place_id: uuid.UUID, comment_id: uuid.UUID
    ) -> None:
        comment = await self._authored_comment(caller, place_id, comment_id)
        summary = comment_summary(comment)

        await self.comments.delete(comment)
        event = await self.activity.append(COMMENT_DELETED, summary, actor_id=caller.user_id)
        await self.db.commit()

        logger.info("waypoint.comment.deleted", comment_id=summary["_id"])
        await self.activity.publish(event)
