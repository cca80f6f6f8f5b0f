"""User schemas."""

from datetime import datetime
from typing import Optional

from pydantic import EmailStr, Field, field_validator

from fixit.models.enums import GlobalRole, NotificationChannel, RegistrationStatus
from fixit.schemas.base import BaseSchema, IDMixin, TimestampMixin


class UserResponse(BaseSchema, IDMixin, TimestampMixin):
    """Public view of a user. Never carries credential material."""

    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role: GlobalRole
    registration_status: RegistrationStatus
    notification_channels: list[str] = []
    is_email_verified: bool = False
    last_login_at: Optional[datetime] = None


class ProfileUpdate(BaseSchema):
    """Self-service profile update."""

    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=50)
    notification_channels: Optional[list[NotificationChannel]] = None


class UserCreate(BaseSchema):
    """Administrator-created account."""

    email: EmailStr
    password: Optional[str] = Field(None, min_length=8, max_length=128)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=50)
    role: GlobalRole = GlobalRole.TENANT


class UserUpdate(ProfileUpdate):
    email: Optional[EmailStr] = None

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v


class RoleChange(BaseSchema):
    role: GlobalRole
