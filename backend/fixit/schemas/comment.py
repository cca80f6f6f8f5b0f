"""Comment and mention schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import AliasChoices, Field

from fixit.models.enums import EntityKind
from fixit.schemas.base import BaseSchema, IDMixin, TimestampMixin


class CommentCreate(BaseSchema):
    message: str = Field(..., min_length=1, max_length=5000)
    is_internal_note: bool = Field(
        False, validation_alias=AliasChoices("is_internal_note", "isInternalNote", "internal")
    )


class CommentUpdate(BaseSchema):
    message: str = Field(..., min_length=1, max_length=5000)


class CommentResponse(BaseSchema, IDMixin, TimestampMixin):
    context_kind: EntityKind
    context_id: UUID
    sender_id: Optional[UUID] = None
    message: str
    is_internal_note: bool = False
    is_external: bool = False
    external_name: Optional[str] = None


class MentionResponse(BaseSchema, IDMixin):
    comment_id: UUID
    context_kind: EntityKind
    context_id: UUID
    is_read: bool
    read_at: Optional[datetime] = None
