"""Maintenance requests router."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.database import get_db
from fixit.core.security import get_current_user
from fixit.models.enums import Category, EntityKind, Priority, RequestStatus
from fixit.models.user import User
from fixit.routers.deps import Pagination, current_actor, get_audit, get_media_service, pagination
from fixit.schemas.base import AssigneeIn, Envelope, PageEnvelope, ok, paged
from fixit.schemas.comment import CommentCreate, CommentResponse
from fixit.schemas.media import MediaResponse
from fixit.schemas.public import PublicLinkEnable, PublicLinkResponse
from fixit.schemas.request import (
    FeedbackIn,
    RequestCreate,
    RequestDetail,
    RequestResponse,
    RequestTransition,
    RequestUpdate,
    StatusHistoryResponse,
)
from fixit.services.audit import AuditService
from fixit.services.authorization import Actor
from fixit.services.item_activity import ItemActivityService
from fixit.services.media import MediaService, UploadPayload
from fixit.services.public_links import PublicLinkService
from fixit.services.requests import RequestFilters, RequestService

router = APIRouter(prefix="/requests", tags=["requests"])

KIND = EntityKind.REQUEST


def get_request_service(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(current_actor),
    audit: AuditService = Depends(get_audit),
    media: MediaService = Depends(get_media_service),
) -> RequestService:
    return RequestService(db, actor, audit, media)


def get_activity(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    audit: AuditService = Depends(get_audit),
    media: MediaService = Depends(get_media_service),
) -> ItemActivityService:
    return ItemActivityService(db, current_user, audit, media)


async def read_uploads(files: list[UploadFile]) -> list[UploadPayload]:
    return [
        UploadPayload(
            data=await f.read(),
            mime_type=f.content_type or "application/octet-stream",
            filename=f.filename or "upload",
        )
        for f in files
    ]


async def _detail(request, activity: ItemActivityService) -> RequestDetail:
    feeds = await activity.feeds(request)
    return RequestDetail.model_validate(request).model_copy(update={
        "status_history": [StatusHistoryResponse(**h) for h in feeds["status_history"]],
        "comments": [CommentResponse.model_validate(c) for c in feeds["comments"]],
        "media": [MediaResponse.model_validate(m) for m in feeds["media"]],
    })


@router.post("", response_model=Envelope[RequestResponse], status_code=status.HTTP_201_CREATED)
async def create_request(data: RequestCreate, requests: RequestService = Depends(get_request_service)):
    """Create a maintenance request on a property (and unit)."""
    request = await requests.create(data.model_dump())
    return ok(RequestResponse.model_validate(request), "Request created")


@router.get("", response_model=PageEnvelope[RequestResponse])
async def list_requests(
    request_status: Optional[RequestStatus] = Query(None, alias="status"),
    category: Optional[Category] = None,
    priority: Optional[Priority] = None,
    property_id: Optional[UUID] = None,
    unit_id: Optional[UUID] = None,
    assigned_to: Optional[UUID] = None,
    search: Optional[str] = Query(None, max_length=100),
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: Pagination = Depends(pagination),
    requests: RequestService = Depends(get_request_service),
):
    """List requests visible to the caller."""
    filters = RequestFilters(
        status=request_status,
        category=category,
        priority=priority,
        property_id=property_id,
        unit_id=unit_id,
        assigned_to_id=assigned_to,
        search=search,
        date_from=date_from,
        date_to=date_to,
    )
    result = await requests.list_requests(filters, page.page, page.limit)
    return paged(result, [RequestResponse.model_validate(r) for r in result.items])


@router.get("/{request_id}", response_model=Envelope[RequestDetail])
async def get_request(
    request_id: UUID,
    requests: RequestService = Depends(get_request_service),
    activity: ItemActivityService = Depends(get_activity),
):
    request = await requests.get_for(request_id)
    return ok(await _detail(request, activity))


@router.patch("/{request_id}", response_model=Envelope[RequestResponse])
async def update_request(
    request_id: UUID,
    data: RequestUpdate,
    requests: RequestService = Depends(get_request_service),
):
    request = await requests.update(request_id, data.model_dump(exclude_unset=True))
    return ok(RequestResponse.model_validate(request), "Request updated")


@router.delete("/{request_id}", response_model=Envelope[None])
async def delete_request(request_id: UUID, requests: RequestService = Depends(get_request_service)):
    """Hard delete with its history, comments, media and notifications."""
    await requests.delete(request_id)
    return ok(message="Request deleted")


@router.post("/{request_id}/assign", response_model=Envelope[RequestResponse])
async def assign_request(
    request_id: UUID,
    data: AssigneeIn,
    requests: RequestService = Depends(get_request_service),
):
    """Assign to a platform user or a vendor; a null assignee unassigns."""
    request = await requests.assign(request_id, data.to_assignee(), data.notes)
    return ok(RequestResponse.model_validate(request), "Request assigned" if data.assignee_id else "Request unassigned")


@router.post("/{request_id}/status", response_model=Envelope[RequestResponse])
async def transition_request(
    request_id: UUID,
    data: RequestTransition,
    requests: RequestService = Depends(get_request_service),
):
    feedback = data.feedback.model_dump() if data.feedback else None
    request = await requests.transition_to(request_id, data.status, data.notes, feedback=feedback)
    return ok(RequestResponse.model_validate(request), f"Request is now {request.status.value}")


@router.post("/{request_id}/feedback", response_model=Envelope[RequestResponse])
async def submit_feedback(
    request_id: UUID,
    data: FeedbackIn,
    requests: RequestService = Depends(get_request_service),
):
    request = await requests.submit_feedback(request_id, data.rating, data.comment)
    return ok(RequestResponse.model_validate(request), "Feedback submitted")


# Comments

@router.get("/{request_id}/comments", response_model=Envelope[list[CommentResponse]])
async def list_comments(request_id: UUID, activity: ItemActivityService = Depends(get_activity)):
    comments = await activity.list_comments(KIND, request_id)
    return ok([CommentResponse.model_validate(c) for c in comments])


@router.post(
    "/{request_id}/comments",
    response_model=Envelope[CommentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    request_id: UUID,
    data: CommentCreate,
    activity: ItemActivityService = Depends(get_activity),
):
    comment = await activity.add_comment(KIND, request_id, data.message, data.is_internal_note)
    return ok(CommentResponse.model_validate(comment), "Comment added")


# Media

@router.post(
    "/{request_id}/media",
    response_model=Envelope[list[MediaResponse]],
    status_code=status.HTTP_201_CREATED,
)
async def upload_media(
    request_id: UUID,
    files: list[UploadFile] = File(...),
    activity: ItemActivityService = Depends(get_activity),
):
    media = await activity.upload(KIND, request_id, await read_uploads(files))
    return ok([MediaResponse.model_validate(m) for m in media], "Media uploaded")


@router.delete("/{request_id}/media/{media_id}", response_model=Envelope[None])
async def delete_media(
    request_id: UUID,
    media_id: UUID,
    activity: ItemActivityService = Depends(get_activity),
):
    await activity.remove_media(KIND, request_id, media_id)
    return ok(message="Media deleted")


# Public link

def get_public_links(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(current_actor),
    audit: AuditService = Depends(get_audit),
) -> PublicLinkService:
    return PublicLinkService(db, actor, audit)


@router.post("/{request_id}/public-link", response_model=Envelope[PublicLinkResponse])
async def enable_public_link(
    request_id: UUID,
    data: Optional[PublicLinkEnable] = None,
    links: PublicLinkService = Depends(get_public_links),
):
    """Mint a new public link. The token is only ever returned here."""
    link = await links.enable(KIND, request_id, data.expires_in_days if data else None)
    return ok(PublicLinkResponse(token=link.token, url=link.url, expires_at=link.expires_at), "Public link enabled")


@router.delete("/{request_id}/public-link", response_model=Envelope[RequestResponse])
async def disable_public_link(request_id: UUID, links: PublicLinkService = Depends(get_public_links)):
    request = await links.disable(KIND, request_id)
    return ok(RequestResponse.model_validate(request), "Public link disabled")
