"""Place and comment API routes.

Learn: Reads are public, writes need a bearer token. Routes only
translate HTTP to service calls; ownership, references and validation
are enforced by the services and surface as domain errors.

Key patterns:
- Query params for filtering, sorting and paging
- X-Total-Count header carries the number of matches; the body stays a plain list
- /places/aggregate is declared before /places/{place_id} so it isn't
  parsed as an id
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from waypoint.auth.dependencies import CurrentIdentity, get_current_user
from waypoint.db.engine import get_db
from waypoint.realtime.pubsub import Broker, get_broker_optional
from waypoint.schemas.place import (
    AuthorCount,
    CommentCreate,
    CommentRead,
    CommentUpdate,
    OwnerCount,
    PlaceCreate,
    PlaceRead,
    PlaceUpdate,
)
from waypoint.services.place_service import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    CommentService,
    Page,
    PlaceService,
)

router = APIRouter()


def _place_svc(
    db: AsyncSession = Depends(get_db),
    broker: Optional[Broker] = Depends(get_broker_optional),
) -> PlaceService:
    return PlaceService(db, broker)


def _comment_svc(
    db: AsyncSession = Depends(get_db),
    broker: Optional[Broker] = Depends(get_broker_optional),
) -> CommentService:
    return CommentService(db, broker)


def _page_headers(response: Response, page: Page) -> None:
    response.headers["X-Total-Count"] = str(page.total)
    response.headers["X-Page"] = str(page.page)
    response.headers["X-Limit"] = str(page.limit)


# ═══════════════════════════════════════════════════════════
# Places
# ═══════════════════════════════════════════════════════════


@router.get("/places", response_model=list[PlaceRead])
async def list_places(
    response: Response,
    owner_id: Optional[uuid.UUID] = Query(None, description="Filter by owner"),
    name: Optional[str] = Query(None, description="Exact name match"),
    q: Optional[str] = Query(None, description="Case-insensitive name search"),
    sort: str = Query("-created_at", description="created_at, -created_at, name or -name"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    svc: PlaceService = Depends(_place_svc),
):
    """List places with optional filters, sorted and paged."""
    result = await svc.list_places(
        owner_id=owner_id, name=name, q=q, sort=sort, page=page, limit=limit
    )
    _page_headers(response, result)
    return result.items


@router.get("/places/aggregate", response_model=list[OwnerCount])
async def places_per_owner(svc: PlaceService = Depends(_place_svc)):
    """Count of places grouped by owner."""
    return await svc.count_by_owner()


@router.post("/places", response_model=PlaceRead, status_code=201)
async def create_place(
    body: PlaceCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: PlaceService = Depends(_place_svc),
):
    return await svc.create_place(identity, body.model_dump())


@router.get("/places/{place_id}", response_model=PlaceRead)
async def get_place(place_id: uuid.UUID, svc: PlaceService = Depends(_place_svc)):
    return await svc.get_place(place_id)


@router.patch("/places/{place_id}", response_model=PlaceRead)
async def update_place(
    place_id: uuid.UUID,
    body: PlaceUpdate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: PlaceService = Depends(_place_svc),
):
    """Partially update a place. Owner only."""
    return await svc.update_place(identity, place_id, body.model_dump(exclude_unset=True))


@router.delete("/places/{place_id}", status_code=204)
async def delete_place(
    place_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: PlaceService = Depends(_place_svc),
):
    """Delete a place and its comments. Owner only."""
    await svc.delete_place(identity, place_id)
    return Response(status_code=204)


# ═══════════════════════════════════════════════════════════
# Comments
# ═══════════════════════════════════════════════════════════


@router.get("/places/{place_id}/comments", response_model=list[CommentRead])
async def list_comments(
    place_id: uuid.UUID,
    response: Response,
    author_id: Optional[uuid.UUID] = Query(None, description="Filter by author"),
    sort: str = Query("created_at", description="created_at or -created_at"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    svc: CommentService = Depends(_comment_svc),
):
    result = await svc.list_comments(
        place_id, author_id=author_id, sort=sort, page=page, limit=limit
    )
    _page_headers(response, result)
    return result.items


@router.get("/places/{place_id}/comments/aggregate", response_model=list[AuthorCount])
async def comments_per_author(
    place_id: uuid.UUID, svc: CommentService = Depends(_comment_svc)
):
    """Count of a place's comments grouped by author."""
    return await svc.count_by_author(place_id)


@router.post("/places/{place_id}/comments", response_model=CommentRead, status_code=201)
async def create_comment(
    place_id: uuid.UUID,
    body: CommentCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: CommentService = Depends(_comment_svc),
):
    return await svc.create_comment(identity, place_id, body.body)


@router.get("/places/{place_id}/comments/{comment_id}", response_model=CommentRead)
async def get_comment(
    place_id: uuid.UUID,
    comment_id: uuid.UUID,
    svc: CommentService = Depends(_comment_svc),
):
    return await svc.get_comment(place_id, comment_id)


@router.patch("/places/{place_id}/comments/{comment_id}", response_model=CommentRead)
async def update_comment(
    place_id: uuid.UUID,
    comment_id: uuid.UUID,
    body: CommentUpdate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: CommentService = Depends(_comment_svc),
):
    """Edit a comment. Author only."""
    return await svc.update_comment(identity, place_id, comment_id, body.body)


@router.delete("/places/{place_id}/comments/{comment_id}", status_code=204)
async def delete_comment(
    place_id: uuid.UUID,
    comment_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: CommentService = Depends(_comment_svc),
):
    """Delete a comment. Author only."""
    await svc.delete_comment(identity, place_id, comment_id)
    return Response(status_code=204)
