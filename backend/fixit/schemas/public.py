"""Public-link schemas."""

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, Field, field_validator, model_validator

from fixit.schemas.base import BaseSchema

STATUS_ALIASES = {
    "inprogress": "in_progress",
    "in-progress": "in_progress",
    "in_progress": "in_progress",
    "completed": "completed",
}


class PublicLinkEnable(BaseSchema):
    expires_in_days: Optional[int] = Field(
        None, validation_alias=AliasChoices("expires_in_days", "expiresInDays")
    )


class PublicLinkResponse(BaseSchema):
    """The only response that ever carries the plaintext token."""

    token: str
    url: str
    expires_at: datetime


class PublicUpdate(BaseSchema):
    """Anonymous update. Name and phone are recorded for accountability only."""

    name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=7, max_length=50)
    status: Optional[str] = None
    comment_message: Optional[str] = Field(
        None, max_length=5000, validation_alias=AliasChoices("comment_message", "commentMessage", "comment")
    )

    @field_validator("status")
    @classmethod
    def normalise_status(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        normalised = STATUS_ALIASES.get(v.strip().lower())
        if normalised is None:
            raise ValueError("status must be inProgress or completed")
        return normalised

    @model_validator(mode="after")
    def status_or_comment(self):
        if self.status is None and not (self.comment_message or "").strip():
            raise ValueError("provide a status or a commentMessage")
        return self
