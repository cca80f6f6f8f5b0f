"""Users router: profile self-service and administration."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.database import get_db
from fixit.core.errors import AuthorizationError
from fixit.core.security import get_current_user
from fixit.models.enums import GlobalRole, RegistrationStatus
from fixit.models.user import User
from fixit.routers.deps import Pagination, current_actor, get_audit, pagination
from fixit.schemas.base import Envelope, PageEnvelope, ok, paged
from fixit.schemas.user import ProfileUpdate, RoleChange, UserCreate, UserResponse, UserUpdate
from fixit.services.audit import AuditService
from fixit.services.authorization import Actor
from fixit.services.accounts import UserService

router = APIRouter(prefix="/users", tags=["users"])


def get_user_service(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(current_actor),
    audit: AuditService = Depends(get_audit),
) -> UserService:
    return UserService(db, actor, audit)


@router.get("/me", response_model=Envelope[UserResponse])
async def get_profile(current_user: User = Depends(get_current_user)):
    return ok(UserResponse.model_validate(current_user))


@router.patch("/me", response_model=Envelope[UserResponse])
async def update_profile(
    data: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    user = await users.update_profile(current_user, data.model_dump(exclude_unset=True))
    return ok(UserResponse.model_validate(user), "Profile updated")


@router.get("", response_model=PageEnvelope[UserResponse])
async def list_users(
    role: Optional[GlobalRole] = None,
    registration_status: Optional[RegistrationStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=100),
    page: Pagination = Depends(pagination),
    users: UserService = Depends(get_user_service),
):
    """List platform users (admin only)."""
    result = await users.list_users(role, registration_status, search, page.page, page.limit)
    return paged(result, [UserResponse.model_validate(u) for u in result.items])


@router.post("", response_model=Envelope[UserResponse], status_code=status.HTTP_201_CREATED)
async def create_user(data: UserCreate, users: UserService = Depends(get_user_service)):
    user = await users.create_user(data.model_dump())
    return ok(UserResponse.model_validate(user), "User created")


@router.get("/{user_id}", response_model=Envelope[UserResponse])
async def get_user(
    user_id: UUID,
    actor: Actor = Depends(current_actor),
    users: UserService = Depends(get_user_service),
):
    if actor.role != GlobalRole.ADMIN and actor.id != user_id:
        raise AuthorizationError("Administrator privileges required")
    return ok(UserResponse.model_validate(await users.get(user_id)))


@router.patch("/{user_id}", response_model=Envelope[UserResponse])
async def update_user(user_id: UUID, data: UserUpdate, users: UserService = Depends(get_user_service)):
    user = await users.update_user(user_id, data.model_dump(exclude_unset=True))
    return ok(UserResponse.model_validate(user), "User updated")


@router.delete("/{user_id}", response_model=Envelope[UserResponse])
async def deactivate_user(user_id: UUID, users: UserService = Depends(get_user_service)):
    """Soft delete: the account is deactivated and its property grants lapse."""
    user = await users.deactivate(user_id)
    return ok(UserResponse.model_validate(user), "User deactivated")


@router.post("/{user_id}/approve", response_model=Envelope[UserResponse])
async def approve_user(user_id: UUID, users: UserService = Depends(get_user_service)):
    user = await users.approve(user_id)
    return ok(UserResponse.model_validate(user), "User approved")


@router.patch("/{user_id}/role", response_model=Envelope[UserResponse])
async def change_role(user_id: UUID, data: RoleChange, users: UserService = Depends(get_user_service)):
    user = await users.change_role(user_id, data.role)
    return ok(UserResponse.model_validate(user), "Role updated")
