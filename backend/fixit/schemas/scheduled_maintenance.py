"""Scheduled maintenance schemas."""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from pydantic import AliasChoices, Field, field_validator, model_validator

from fixit.models.enums import Category, FrequencyType, ScheduleStatus
from fixit.schemas.base import AssigneeIn, AssigneeOut, BaseSchema, IDMixin, TimestampMixin
from fixit.schemas.comment import CommentResponse
from fixit.schemas.media import MediaResponse
from fixit.schemas.request import StatusHistoryResponse


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class FrequencyIn(BaseSchema):
    """Recurrence rule. Ranges are checked when the rule is expanded."""

    type: FrequencyType
    interval: int = Field(1, ge=1)
    day_of_week: Optional[int] = Field(None, validation_alias=AliasChoices("day_of_week", "dayOfWeek"))
    day_of_month: Optional[int] = Field(None, validation_alias=AliasChoices("day_of_month", "dayOfMonth"))
    month_of_year: Optional[int] = Field(None, validation_alias=AliasChoices("month_of_year", "monthOfYear"))
    custom_days: list[int] = Field([], validation_alias=AliasChoices("custom_days", "customDays"))
    end_date: Optional[datetime] = Field(None, validation_alias=AliasChoices("end_date", "endDate"))
    occurrences: Optional[int] = Field(None, ge=0)

    @field_validator("end_date")
    @classmethod
    def normalise_end_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _naive_utc(v)


class ScheduleCreate(BaseSchema):
    """Create a scheduled maintenance task."""

    title: str = Field(..., min_length=3, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    category: Category = Category.SCHEDULED
    property_id: UUID = Field(..., validation_alias=AliasChoices("property_id", "propertyId", "property"))
    unit_id: Optional[UUID] = Field(None, validation_alias=AliasChoices("unit_id", "unitId", "unit"))
    scheduled_date: datetime = Field(..., validation_alias=AliasChoices("scheduled_date", "scheduledDate"))
    recurring: bool = False
    frequency: Optional[FrequencyIn] = None
    assigned_to: Optional[AssigneeIn] = Field(
        None, validation_alias=AliasChoices("assigned_to", "assignedTo", "assignee")
    )

    @field_validator("scheduled_date")
    @classmethod
    def normalise_scheduled_date(cls, v: datetime) -> datetime:
        return _naive_utc(v)

    @model_validator(mode="after")
    def recurring_needs_frequency(self):
        if self.recurring and self.frequency is None:
            raise ValueError("frequency is required for recurring tasks")
        return self

    def to_data(self) -> dict[str, Any]:
        data = self.model_dump(exclude={"assigned_to", "frequency"})
        data["frequency"] = self.frequency.model_dump() if self.frequency else None
        data["assignee"] = self.assigned_to.to_assignee() if self.assigned_to else None
        return data


class ScheduleUpdate(BaseSchema):
    """Header and timing fields. Changing timing recomputes the next due date."""

    title: Optional[str] = Field(None, min_length=3, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    category: Optional[Category] = None
    scheduled_date: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("scheduled_date", "scheduledDate")
    )
    recurring: Optional[bool] = None
    frequency: Optional[FrequencyIn] = None

    @field_validator("scheduled_date")
    @classmethod
    def normalise_scheduled_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _naive_utc(v)

    def to_changes(self) -> dict[str, Any]:
        changes = self.model_dump(exclude_unset=True, exclude={"frequency"})
        if self.frequency is not None:
            changes["frequency"] = self.frequency.model_dump()
        return changes


class ScheduleTransitionIn(BaseSchema):
    status: ScheduleStatus
    notes: Optional[str] = Field(None, max_length=2000)


class ScheduleNotes(BaseSchema):
    notes: Optional[str] = Field(None, max_length=2000)


class ScheduleResponse(BaseSchema, IDMixin, TimestampMixin):
    """Scheduled maintenance response."""

    title: str
    description: Optional[str] = None
    category: Category
    status: ScheduleStatus
    property_id: UUID
    unit_id: Optional[UUID] = None
    created_by_id: Optional[UUID] = None
    assignee: Optional[AssigneeOut] = None
    assigned_by_id: Optional[UUID] = None
    assigned_at: Optional[datetime] = None
    scheduled_date: datetime
    recurring: bool
    frequency: Optional[dict[str, Any]] = None
    frequency_formatted: Optional[str] = None
    next_due_date: Optional[datetime] = None
    paused_due_date: Optional[datetime] = None
    last_executed_at: Optional[datetime] = None
    last_generated_request_id: Optional[UUID] = None
    public_link_enabled: bool = False
    public_link_expires_at: Optional[datetime] = None
    is_active: bool = True


class ScheduleDetail(ScheduleResponse):
    status_history: list[StatusHistoryResponse] = []
    comments: list[CommentResponse] = []
    media: list[MediaResponse] = []
