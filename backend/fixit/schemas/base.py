"""Base schema utilities and the response envelope."""

from datetime import datetime
from typing import Any, Generic, Optional, TypeVar
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from fixit.models.enums import AssigneeKind

T = TypeVar("T")


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
        validate_assignment=True,
        populate_by_name=True,
    )


class TimestampMixin(BaseModel):
    """Mixin for created_at/updated_at timestamps."""

    created_at: datetime
    updated_at: Optional[datetime] = None


class IDMixin(BaseModel):
    """Mixin for UUID id field."""

    id: UUID


class Envelope(BaseModel, Generic[T]):
    """``{success, message?, data?}`` wrapper used by every endpoint."""

    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None


class PageEnvelope(BaseModel, Generic[T]):
    success: bool = True
    message: Optional[str] = None
    data: list[T] = []
    count: int = 0
    total: int = 0
    page: int = 1
    limit: int = 20
    pages: int = 0


def ok(data: Any = None, message: Optional[str] = None) -> dict[str, Any]:
    return {"success": True, "message": message, "data": data}


def paged(page, items: list[Any], message: Optional[str] = None) -> dict[str, Any]:
    """Envelope for a ``Page`` with already-serialised items."""
    return {
        "success": True,
        "message": message,
        "data": items,
        "count": len(items),
        "total": page.total,
        "page": page.page,
        "limit": page.limit,
        "pages": page.pages,
    }


class AssigneeOut(BaseSchema):
    kind: AssigneeKind
    id: UUID


class AssigneeIn(BaseSchema):
    """``{"assignee": <id>, "kind": "User" | "Vendor"}``; a null assignee unassigns."""

    assignee_id: Optional[UUID] = Field(
        None, validation_alias=AliasChoices("assignee_id", "assignee", "assignedTo", "assigned_to")
    )
    kind: AssigneeKind = Field(
        AssigneeKind.USER, validation_alias=AliasChoices("kind", "assignee_kind", "assignedToModel")
    )
    notes: Optional[str] = Field(None, max_length=2000)

    def to_assignee(self):
        from fixit.models.assignable import Assignee

        if self.assignee_id is None:
            return None
        return Assignee(self.kind, self.assignee_id)
