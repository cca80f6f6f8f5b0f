"""Scheduled maintenance router."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.database import get_db
from fixit.models.enums import Category, EntityKind, ScheduleStatus
from fixit.models.scheduled_maintenance import ScheduledMaintenance
from fixit.routers.deps import Pagination, current_actor, get_audit, get_media_service, pagination
from fixit.routers.requests import get_activity, get_public_links, read_uploads
from fixit.schemas.base import AssigneeIn, Envelope, PageEnvelope, ok, paged
from fixit.schemas.comment import CommentCreate, CommentResponse
from fixit.schemas.media import MediaResponse
from fixit.schemas.public import PublicLinkEnable, PublicLinkResponse
from fixit.schemas.request import RequestResponse, StatusHistoryResponse
from fixit.schemas.scheduled_maintenance import (
    ScheduleCreate,
    ScheduleDetail,
    ScheduleNotes,
    ScheduleResponse,
    ScheduleTransitionIn,
    ScheduleUpdate,
)
from fixit.services.audit import AuditService
from fixit.services.authorization import Actor
from fixit.services.item_activity import ItemActivityService
from fixit.services.media import MediaService
from fixit.services.public_links import PublicLinkService
from fixit.services.scheduled_maintenance import (
    ScheduledMaintenanceService,
    ScheduleEvent,
    ScheduleFilters,
    frequency_label,
)

router = APIRouter(prefix="/scheduled-maintenance", tags=["scheduled-maintenance"])

KIND = EntityKind.SCHEDULED_MAINTENANCE


def get_schedule_service(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(current_actor),
    audit: AuditService = Depends(get_audit),
    media: MediaService = Depends(get_media_service),
) -> ScheduledMaintenanceService:
    return ScheduledMaintenanceService(db, actor, audit, media)


def _response(schedule: ScheduledMaintenance) -> ScheduleResponse:
    return ScheduleResponse.model_validate(schedule).model_copy(
        update={"frequency_formatted": frequency_label(schedule)}
    )


@router.post("", response_model=Envelope[ScheduleResponse], status_code=status.HTTP_201_CREATED)
async def create_schedule(
    data: ScheduleCreate,
    schedules: ScheduledMaintenanceService = Depends(get_schedule_service),
):
    """Create a one-time or recurring maintenance task."""
    schedule = await schedules.create(data.to_data())
    return ok(_response(schedule), "Scheduled maintenance created")


@router.get("", response_model=PageEnvelope[ScheduleResponse])
async def list_schedules(
    schedule_status: Optional[ScheduleStatus] = Query(None, alias="status"),
    category: Optional[Category] = None,
    property_id: Optional[UUID] = None,
    unit_id: Optional[UUID] = None,
    assigned_to: Optional[UUID] = None,
    search: Optional[str] = Query(None, max_length=100),
    page: Pagination = Depends(pagination),
    schedules: ScheduledMaintenanceService = Depends(get_schedule_service),
):
    filters = ScheduleFilters(
        status=schedule_status,
        category=category,
        property_id=property_id,
        unit_id=unit_id,
        assigned_to_id=assigned_to,
        search=search,
    )
    result = await schedules.list_schedules(filters, page.page, page.limit)
    return paged(result, [_response(s) for s in result.items])


@router.get("/{schedule_id}", response_model=Envelope[ScheduleDetail])
async def get_schedule(
    schedule_id: UUID,
    schedules: ScheduledMaintenanceService = Depends(get_schedule_service),
    activity: ItemActivityService = Depends(get_activity),
):
    schedule = await schedules.get_for(schedule_id)
    feeds = await activity.feeds(schedule)
    detail = ScheduleDetail.model_validate(schedule).model_copy(update={
        "frequency_formatted": frequency_label(schedule),
        "status_history": [StatusHistoryResponse(**h) for h in feeds["status_history"]],
        "comments": [CommentResponse.model_validate(c) for c in feeds["comments"]],
        "media": [MediaResponse.model_validate(m) for m in feeds["media"]],
    })
    return ok(detail)


@router.patch("/{schedule_id}", response_model=Envelope[ScheduleResponse])
async def update_schedule(
    schedule_id: UUID,
    data: ScheduleUpdate,
    schedules: ScheduledMaintenanceService = Depends(get_schedule_service),
):
    schedule = await schedules.update(schedule_id, data.to_changes())
    return ok(_response(schedule), "Scheduled maintenance updated")


@router.delete("/{schedule_id}", response_model=Envelope[None])
async def delete_schedule(
    schedule_id: UUID,
    schedules: ScheduledMaintenanceService = Depends(get_schedule_service),
):
    await schedules.delete(schedule_id)
    return ok(message="Scheduled maintenance deleted")


@router.post("/{schedule_id}/assign", response_model=Envelope[ScheduleResponse])
async def assign_schedule(
    schedule_id: UUID,
    data: AssigneeIn,
    schedules: ScheduledMaintenanceService = Depends(get_schedule_service),
):
    schedule = await schedules.assign(schedule_id, data.to_assignee())
    return ok(_response(schedule), "Task assigned" if data.assignee_id else "Task unassigned")


@router.post("/{schedule_id}/status", response_model=Envelope[ScheduleResponse])
async def transition_schedule(
    schedule_id: UUID,
    data: ScheduleTransitionIn,
    schedules: ScheduledMaintenanceService = Depends(get_schedule_service),
):
    schedule = await schedules.transition_to(schedule_id, data.status, data.notes)
    return ok(_response(schedule), f"Task is now {schedule.status.value}")


async def _apply_event(
    schedule_id: UUID,
    event: ScheduleEvent,
    data: Optional[ScheduleNotes],
    schedules: ScheduledMaintenanceService,
) -> ScheduledMaintenance:
    return await schedules.transition(schedule_id, event, data.notes if data else None)


@router.post("/{schedule_id}/pause", response_model=Envelope[ScheduleResponse])
async def pause_schedule(
    schedule_id: UUID,
    data: Optional[ScheduleNotes] = None,
    schedules: ScheduledMaintenanceService = Depends(get_schedule_service),
):
    """Pause a series; the pending due date is kept for resume."""
    schedule = await _apply_event(schedule_id, ScheduleEvent.PAUSE, data, schedules)
    return ok(_response(schedule), "Task paused")


@router.post("/{schedule_id}/resume", response_model=Envelope[ScheduleResponse])
async def resume_schedule(
    schedule_id: UUID,
    data: Optional[ScheduleNotes] = None,
    schedules: ScheduledMaintenanceService = Depends(get_schedule_service),
):
    schedule = await _apply_event(schedule_id, ScheduleEvent.RESUME, data, schedules)
    return ok(_response(schedule), "Task resumed")


@router.post("/{schedule_id}/complete", response_model=Envelope[ScheduleResponse])
async def complete_schedule(
    schedule_id: UUID,
    data: Optional[ScheduleNotes] = None,
    schedules: ScheduledMaintenanceService = Depends(get_schedule_service),
):
    """Complete the current occurrence. Recurring tasks roll to the next due date."""
    schedule = await _apply_event(schedule_id, ScheduleEvent.COMPLETE, data, schedules)
    return ok(_response(schedule), "Task completed")


@router.post(
    "/{schedule_id}/create-request",
    response_model=Envelope[Optional[RequestResponse]],
    status_code=status.HTTP_201_CREATED,
)
async def create_request_from_schedule(
    schedule_id: UUID,
    schedules: ScheduledMaintenanceService = Depends(get_schedule_service),
):
    """Generate the request for the current due occurrence now."""
    request = await schedules.create_request_from_schedule(schedule_id)
    if request is None:
        return ok(None, "Skipped: an earlier generated request is still open")
    return ok(RequestResponse.model_validate(request), "Request generated")


# Comments

@router.get("/{schedule_id}/comments", response_model=Envelope[list[CommentResponse]])
async def list_comments(schedule_id: UUID, activity: ItemActivityService = Depends(get_activity)):
    comments = await activity.list_comments(KIND, schedule_id)
    return ok([CommentResponse.model_validate(c) for c in comments])


@router.post(
    "/{schedule_id}/comments",
    response_model=Envelope[CommentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    schedule_id: UUID,
    data: CommentCreate,
    activity: ItemActivityService = Depends(get_activity),
):
    comment = await activity.add_comment(KIND, schedule_id, data.message, data.is_internal_note)
    return ok(CommentResponse.model_validate(comment), "Comment added")


# Media

@router.post(
    "/{schedule_id}/media",
    response_model=Envelope[list[MediaResponse]],
    status_code=status.HTTP_201_CREATED,
)
async def upload_media(
    schedule_id: UUID,
    files: list[UploadFile] = File(...),
    activity: ItemActivityService = Depends(get_activity),
):
    media = await activity.upload(KIND, schedule_id, await read_uploads(files))
    return ok([MediaResponse.model_validate(m) for m in media], "Media uploaded")


@router.delete("/{schedule_id}/media/{media_id}", response_model=Envelope[None])
async def delete_media(
    schedule_id: UUID,
    media_id: UUID,
    activity: ItemActivityService = Depends(get_activity),
):
    await activity.remove_media(KIND, schedule_id, media_id)
    return ok(message="Media deleted")


# Public link

@router.post("/{schedule_id}/public-link", response_model=Envelope[PublicLinkResponse])
async def enable_public_link(
    schedule_id: UUID,
    data: Optional[PublicLinkEnable] = None,
    links: PublicLinkService = Depends(get_public_links),
):
    link = await links.enable(KIND, schedule_id, data.expires_in_days if data else None)
    return ok(PublicLinkResponse(token=link.token, url=link.url, expires_at=link.expires_at), "Public link enabled")


@router.delete("/{schedule_id}/public-link", response_model=Envelope[ScheduleResponse])
async def disable_public_link(schedule_id: UUID, links: PublicLinkService = Depends(get_public_links)):
    schedule = await links.disable(KIND, schedule_id)
    return ok(_response(schedule), "Public link disabled")
