"""Maintenance request schemas."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import AliasChoices, Field, model_validator

from fixit.models.enums import Category, Priority, RequestStatus
from fixit.schemas.base import AssigneeOut, BaseSchema, IDMixin, TimestampMixin
from fixit.schemas.comment import CommentResponse
from fixit.schemas.media import MediaResponse


class RequestCreate(BaseSchema):
    """Create a maintenance request. Tenants must name their own unit."""

    title: str = Field(..., min_length=3, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    category: Category
    priority: Priority = Priority.MEDIUM
    property_id: UUID = Field(..., validation_alias=AliasChoices("property_id", "propertyId", "property"))
    unit_id: Optional[UUID] = Field(None, validation_alias=AliasChoices("unit_id", "unitId", "unit"))


class RequestUpdate(BaseSchema):
    """Header fields editable while the request is not canceled or archived."""

    title: Optional[str] = Field(None, min_length=3, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    category: Optional[Category] = None
    priority: Optional[Priority] = None


class FeedbackIn(BaseSchema):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)


class RequestTransition(BaseSchema):
    """Move a request to ``status``. Feedback may accompany verification."""

    status: RequestStatus
    notes: Optional[str] = Field(None, max_length=2000)
    feedback: Optional[FeedbackIn] = None

    @model_validator(mode="after")
    def feedback_only_on_verify(self):
        if self.feedback is not None and self.status != RequestStatus.VERIFIED:
            raise ValueError("feedback can only accompany verification")
        return self


class RequestResponse(BaseSchema, IDMixin, TimestampMixin):
    """Request response."""

    title: str
    description: Optional[str] = None
    category: Category
    priority: Priority
    status: RequestStatus
    property_id: UUID
    unit_id: Optional[UUID] = None
    created_by_id: Optional[UUID] = None
    assignee: Optional[AssigneeOut] = None
    assigned_by_id: Optional[UUID] = None
    assigned_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    feedback: Optional[dict[str, Any]] = None
    generated_from_schedule_id: Optional[UUID] = None
    generated_for_due_date: Optional[datetime] = None
    public_link_enabled: bool = False
    public_link_expires_at: Optional[datetime] = None
    is_active: bool = True


class StatusHistoryResponse(BaseSchema):
    sequence: int
    status: str
    label: Optional[str] = None
    changed_at: datetime
    changed_by_id: Optional[UUID] = None
    notes: Optional[str] = None


class RequestDetail(RequestResponse):
    """Request with its feeds, as seen by an authenticated participant."""

    status_history: list[StatusHistoryResponse] = []
    comments: list[CommentResponse] = []
    media: list[MediaResponse] = []
