"""Invitation schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import AliasChoices, EmailStr, Field, field_validator

from fixit.models.enums import InviteStatus, PropertyRole
from fixit.schemas.base import BaseSchema, IDMixin, TimestampMixin


class InviteCreate(BaseSchema):
    """Invite someone by email to a property (a unit for tenants)."""

    email: EmailStr
    property_id: UUID = Field(..., validation_alias=AliasChoices("property_id", "propertyId", "property"))
    unit_id: Optional[UUID] = Field(None, validation_alias=AliasChoices("unit_id", "unitId", "unit"))
    roles: list[PropertyRole] = Field(..., min_length=1, validation_alias=AliasChoices("roles", "role"))

    @field_validator("roles", mode="before")
    @classmethod
    def single_role(cls, v):
        return [v] if isinstance(v, str) else v


class InviteAccept(BaseSchema):
    token: str = Field(..., min_length=16, max_length=128)
    password: str = Field(..., min_length=1, max_length=128)
    first_name: Optional[str] = Field(
        None, max_length=100, validation_alias=AliasChoices("first_name", "firstName")
    )
    last_name: Optional[str] = Field(
        None, max_length=100, validation_alias=AliasChoices("last_name", "lastName")
    )
    phone: Optional[str] = Field(None, max_length=50)


class InviteResponse(BaseSchema, IDMixin, TimestampMixin):
    email: str
    roles: list[PropertyRole]
    property_id: UUID
    unit_id: Optional[UUID] = None
    status: InviteStatus
    expires_at: datetime
    invited_by_id: Optional[UUID] = None
    accepted_by_id: Optional[UUID] = None
    accepted_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None


class InviteSent(InviteResponse):
    """Returned once to the sender so the link can be shared by hand."""

    invite_link: str


class InvitePreview(BaseSchema):
    """What the invitee sees before accepting."""

    email: str
    roles: list[PropertyRole]
    property_name: str
    expires_at: datetime
