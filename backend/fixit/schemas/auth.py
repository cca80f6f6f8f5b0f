"""Auth schemas."""

from typing import Optional

from pydantic import AliasChoices, EmailStr, Field

from fixit.models.enums import GlobalRole
from fixit.schemas.base import BaseSchema
from fixit.schemas.user import UserResponse


class RegisterRequest(BaseSchema):
    """Self-registration. Admin accounts cannot be self-registered."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    first_name: Optional[str] = Field(
        None, max_length=100, validation_alias=AliasChoices("first_name", "firstName")
    )
    last_name: Optional[str] = Field(
        None, max_length=100, validation_alias=AliasChoices("last_name", "lastName")
    )
    phone: Optional[str] = Field(None, max_length=50)
    role: GlobalRole = GlobalRole.TENANT


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class GoogleLoginRequest(BaseSchema):
    id_token: str = Field(..., min_length=10, validation_alias=AliasChoices("id_token", "idToken", "token"))


class VerifyEmailRequest(BaseSchema):
    token: str = Field(..., min_length=16, max_length=128)


class ForgotPasswordRequest(BaseSchema):
    email: EmailStr


class ResetPasswordRequest(BaseSchema):
    token: str = Field(..., min_length=16, max_length=128)
    password: str = Field(
        ..., min_length=8, max_length=128, validation_alias=AliasChoices("password", "new_password", "newPassword")
    )


class ChangePasswordRequest(BaseSchema):
    current_password: str = Field(
        ..., min_length=1, max_length=128, validation_alias=AliasChoices("current_password", "currentPassword")
    )
    new_password: str = Field(
        ..., min_length=8, max_length=128, validation_alias=AliasChoices("new_password", "newPassword")
    )


class TokenResponse(BaseSchema):
    """Issued session token."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse
