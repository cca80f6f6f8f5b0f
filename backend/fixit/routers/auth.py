"""Auth router: registration, sessions and password management."""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.config import get_settings
from fixit.core.database import get_db
from fixit.core.rate_limit import limiter
from fixit.core.security import get_current_user
from fixit.models.user import User
from fixit.routers.deps import get_audit
from fixit.schemas.auth import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    GoogleLoginRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    VerifyEmailRequest,
)
from fixit.schemas.base import Envelope, ok
from fixit.schemas.user import UserResponse
from fixit.services.accounts import AccountService
from fixit.services.audit import AuditService

router = APIRouter(prefix="/auth", tags=["auth"])

settings = get_settings()

CREDENTIAL_LIMIT = "10/minute"


def token_payload(user: User, token: str) -> TokenResponse:
    return TokenResponse(
        access_token=token,
        expires_in=int(settings.jwt_lifetime.total_seconds()),
        user=UserResponse.model_validate(user),
    )


def get_accounts(
    db: AsyncSession = Depends(get_db),
    audit: AuditService = Depends(get_audit),
) -> AccountService:
    return AccountService(db, audit)


@router.post("/register", response_model=Envelope[UserResponse], status_code=status.HTTP_201_CREATED)
async def register(data: RegisterRequest, accounts: AccountService = Depends(get_accounts)):
    """Create an account pending email verification."""
    user = await accounts.register(data.model_dump())
    return ok(
        UserResponse.model_validate(user),
        "Registration successful. Please check your email to verify your account.",
    )


@router.post("/verify-email", response_model=Envelope[UserResponse])
async def verify_email(data: VerifyEmailRequest, accounts: AccountService = Depends(get_accounts)):
    user = await accounts.verify_email(data.token)
    message = "Email verified" if user.is_active else "Email verified. Your account is awaiting approval."
    return ok(UserResponse.model_validate(user), message)


@router.post("/login", response_model=Envelope[TokenResponse])
@limiter.limit(CREDENTIAL_LIMIT)
async def login(request: Request, data: LoginRequest, accounts: AccountService = Depends(get_accounts)):
    user, token = await accounts.login(data.email, data.password)
    return ok(token_payload(user, token), "Login successful")


@router.post("/google-login", response_model=Envelope[TokenResponse])
async def google_login(data: GoogleLoginRequest, accounts: AccountService = Depends(get_accounts)):
    user, token = await accounts.google_login(data.id_token)
    return ok(token_payload(user, token), "Login successful")


@router.post("/refresh", response_model=Envelope[TokenResponse])
async def refresh(
    current_user: User = Depends(get_current_user),
    accounts: AccountService = Depends(get_accounts),
):
    token = await accounts.refresh(current_user)
    return ok(token_payload(current_user, token))


@router.post("/logout", response_model=Envelope[None])
async def logout(
    current_user: User = Depends(get_current_user),
    accounts: AccountService = Depends(get_accounts),
):
    await accounts.logout(current_user)
    return ok(message="Logged out")


@router.post("/forgot-password", response_model=Envelope[None])
@limiter.limit(CREDENTIAL_LIMIT)
async def forgot_password(
    request: Request,
    data: ForgotPasswordRequest,
    accounts: AccountService = Depends(get_accounts),
):
    await accounts.forgot_password(data.email)
    return ok(message="If an account exists for that email, a reset link has been sent.")


@router.post("/reset-password", response_model=Envelope[None])
async def reset_password(data: ResetPasswordRequest, accounts: AccountService = Depends(get_accounts)):
    await accounts.reset_password(data.token, data.password)
    return ok(message="Password has been reset. You can now log in.")


@router.post("/change-password", response_model=Envelope[None])
async def change_password(
    data: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    accounts: AccountService = Depends(get_accounts),
):
    await accounts.change_password(current_user, data.current_password, data.new_password)
    return ok(message="Password changed")


@router.get("/me", response_model=Envelope[UserResponse])
async def get_me(current_user: User = Depends(get_current_user)):
    """Get current authenticated user."""
    return ok(UserResponse.model_validate(current_user))
