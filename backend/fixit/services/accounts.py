"""Account lifecycle: registration, sessions, passwords and administration."""

import logging
import secrets
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.config import get_settings
from fixit.core.database import run_in_transaction
from fixit.core.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from fixit.core.security import (
    create_access_token,
    hash_password,
    hash_token,
    token_expiry,
    verify_federated_token,
    verify_password,
)
from fixit.models.enums import (
    AuditAction,
    EntityKind,
    GlobalRole,
    NotificationChannel,
    NotificationKind,
    RegistrationStatus,
)
from fixit.models.property import PropertyUser
from fixit.models.user import User
from fixit.services.audit import AuditService
from fixit.services.authorization import Action, Actor, Authorizer, Target
from fixit.services.jobs import JOB_SEND_EMAIL, JobsService
from fixit.services.notifications import NotificationService, Related
from fixit.services.requests import Page

logger = logging.getLogger(__name__)

settings = get_settings()

MIN_PASSWORD_LENGTH = 8
EMAIL_VERIFICATION_HOURS = 24
PASSWORD_RESET_HOURS = 1

SELF_REGISTRATION_ROLES = frozenset(
    {GlobalRole.LANDLORD, GlobalRole.PROPERTY_MANAGER, GlobalRole.TENANT, GlobalRole.VENDOR}
)
# Management accounts wait for an administrator after verifying their email
APPROVAL_REQUIRED_ROLES = frozenset({GlobalRole.LANDLORD, GlobalRole.PROPERTY_MANAGER})
# Accounts property management may approve for its own properties
PROPERTY_APPROVABLE_ROLES = frozenset({GlobalRole.TENANT, GlobalRole.VENDOR})

PROFILE_FIELDS = ("first_name", "last_name", "phone", "notification_channels")
ADMIN_FIELDS = PROFILE_FIELDS + ("email",)


def check_password_strength(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            errors=[{"field": "password", "reason": "too short"}],
        )


def normalise_channels(channels: list[str]) -> list[str]:
    try:
        return sorted({NotificationChannel(c).value for c in channels})
    except ValueError as e:
        raise ValidationError(str(e), errors=[{"field": "notification_channels", "reason": "invalid"}])


class AccountService:
    """Unauthenticated and self-service flows."""

    def __init__(self, db: AsyncSession, audit: AuditService):
        self.db = db
        self.audit = audit
        self.jobs = JobsService(db)

    async def find_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
        return result.scalar_one_or_none()

    async def _send_link(self, user: User, purpose: str, path: str, token: str, subject: str, text: str) -> None:
        link = f"{settings.frontend_url.rstrip('/')}/{path}/{token}"
        await self.jobs.enqueue(
            JOB_SEND_EMAIL,
            {
                "to": user.email,
                "subject": f"{settings.app_name}: {subject}",
                "text": f"{text}\n\n{link}",
                "html": None,
            },
            unique_scope=f"{JOB_SEND_EMAIL}:{purpose}:{user.id}:{hash_token(token)[:16]}",
        )

    async def register(self, data: dict[str, Any]) -> User:
        role = GlobalRole(data.get("role") or GlobalRole.TENANT)
        if role not in SELF_REGISTRATION_ROLES:
            raise ValidationError("This role cannot be self-registered", errors=[{"field": "role", "reason": "not allowed"}])
        check_password_strength(data["password"])
        email = data["email"].strip().lower()
        if await self.find_by_email(email):
            raise ConflictError("An account with this email address already exists")

        token = secrets.token_urlsafe(32)

        async def op() -> User:
            user = User(
                id=uuid.uuid4(),
                email=email,
                first_name=data.get("first_name"),
                last_name=data.get("last_name"),
                phone=data.get("phone"),
                password_hash=hash_password(data["password"]),
                role=role,
                registration_status=RegistrationStatus.PENDING_EMAIL_VERIFICATION,
                is_email_verified=False,
                email_verification_token_hash=hash_token(token),
                email_verification_expires_at=token_expiry(EMAIL_VERIFICATION_HOURS),
            )
            self.db.add(user)
            await self.db.flush()
            await self.audit.log(
                AuditAction.USER_REGISTERED,
                resource_type=EntityKind.USER.value,
                resource_id=user.id,
                user_id=user.id,
                new_value={"email": user.email, "role": user.role, "registration_status": user.registration_status},
                description=f"New user {user.email} registered with {role.value} role",
            )
            await self._send_link(
                user,
                "verify",
                "verify-email",
                token,
                "Verify your email address",
                "Welcome! Please confirm your email address to activate your account.",
            )
            return user

        user = await run_in_transaction(self.db, op)
        logger.info(f"[AUTH] Registered user {user.id} with role {role.value}")
        return user

    async def verify_email(self, token: str) -> User:
        async def op() -> User:
            result = await self.db.execute(
                select(User).where(User.email_verification_token_hash == hash_token(token))
            )
            user = result.scalar_one_or_none()
            if user is None or not user.email_verification_expires_at or user.email_verification_expires_at < datetime.utcnow():
                raise ValidationError("Invalid or expired verification token")
            old_status = user.registration_status
            user.is_email_verified = True
            user.email_verification_token_hash = None
            user.email_verification_expires_at = None
            if user.registration_status == RegistrationStatus.PENDING_EMAIL_VERIFICATION:
                user.registration_status = (
                    RegistrationStatus.PENDING_ADMIN_APPROVAL
                    if user.role in APPROVAL_REQUIRED_ROLES
                    else RegistrationStatus.ACTIVE
                )
            await self.audit.log(
                AuditAction.EMAIL_VERIFIED,
                resource_type=EntityKind.USER.value,
                resource_id=user.id,
                user_id=user.id,
                old_value={"registration_status": old_status},
                new_value={"registration_status": user.registration_status},
            )
            return user

        return await run_in_transaction(self.db, op)

    async def _issue(self, user: User, action: AuditAction, description: str) -> str:
        user.last_login_at = datetime.utcnow()
        await self.audit.log(
            action,
            resource_type=EntityKind.USER.value,
            resource_id=user.id,
            user_id=user.id,
            description=description,
        )
        await self.db.commit()
        return create_access_token(user.id, user.role.value)

    def _check_can_sign_in(self, user: User) -> None:
        status = user.registration_status
        if status == RegistrationStatus.DEACTIVATED:
            raise AuthorizationError("Your account has been deactivated. Please contact support.")
        if status == RegistrationStatus.PENDING_EMAIL_VERIFICATION or not user.is_email_verified:
            raise AuthorizationError("Please verify your email address before logging in.")
        if status != RegistrationStatus.ACTIVE:
            raise AuthorizationError("Your account is awaiting approval.")

    async def login(self, email: str, password: str) -> tuple[User, str]:
        user = await self.find_by_email(email)
        if user is None or user.is_synthetic or not user.password_hash:
            logger.warning("[AUTH] Failed login: unknown account or no password")
            raise AuthenticationError("Invalid credentials")
        if not verify_password(password, user.password_hash):
            await self.audit.log_failure(
                AuditAction.LOGIN_FAILED,
                error_message="Incorrect password",
                resource_type=EntityKind.USER.value,
                resource_id=user.id,
                user_id=user.id,
            )
            await self.db.commit()
            logger.warning(f"[AUTH] Failed login for user {user.id}: incorrect password")
            raise AuthenticationError("Invalid credentials")
        self._check_can_sign_in(user)
        token = await self._issue(user, AuditAction.LOGIN, "Login successful")
        return user, token

    async def google_login(self, id_token: str) -> tuple[User, str]:
        claims = verify_federated_token(id_token)
        email = (claims.get("email") or "").lower()
        uid = claims.get("uid") or claims.get("sub")
        if not email or not uid:
            raise AuthenticationError("Google account has no verified email")

        result = await self.db.execute(select(User).where(or_(User.federated_id == uid, func.lower(User.email) == email)))
        user = result.scalars().first()
        if user is not None and user.is_synthetic:
            raise AuthenticationError("Invalid credentials")
        if user is None:
            name = (claims.get("name") or "").split(" ", 1)
            user = User(
                id=uuid.uuid4(),
                email=email,
                first_name=name[0] or None,
                last_name=name[1] if len(name) > 1 else None,
                federated_id=uid,
                role=GlobalRole.TENANT,
                registration_status=RegistrationStatus.ACTIVE,
                is_email_verified=True,
            )
            self.db.add(user)
            await self.db.flush()
            await self.audit.log(
                AuditAction.USER_REGISTERED,
                resource_type=EntityKind.USER.value,
                resource_id=user.id,
                user_id=user.id,
                new_value={"email": user.email, "role": user.role, "federated": True},
            )
        else:
            if user.registration_status == RegistrationStatus.DEACTIVATED:
                raise AuthorizationError("Your account has been deactivated. Please contact support.")
            user.federated_id = user.federated_id or uid
            user.is_email_verified = True
            if user.registration_status == RegistrationStatus.PENDING_EMAIL_VERIFICATION:
                user.registration_status = (
                    RegistrationStatus.PENDING_ADMIN_APPROVAL
                    if user.role in APPROVAL_REQUIRED_ROLES
                    else RegistrationStatus.ACTIVE
                )
        self._check_can_sign_in(user)
        token = await self._issue(user, AuditAction.LOGIN, "Google login successful")
        return user, token

    async def refresh(self, user: User) -> str:
        return create_access_token(user.id, user.role.value)

    async def logout(self, user: User) -> None:
        # Tokens are stateless; the client discards its copy
        await self.audit.log(AuditAction.LOGOUT, resource_type=EntityKind.USER.value, resource_id=user.id, user_id=user.id)
        await self.db.commit()

    async def forgot_password(self, email: str) -> None:
        """Always succeeds so account existence is not disclosed."""
        user = await self.find_by_email(email)
        if user is None or user.is_synthetic or user.registration_status == RegistrationStatus.DEACTIVATED:
            logger.info("[AUTH] Password reset requested for unknown or inactive account")
            return
        token = secrets.token_urlsafe(32)
        user.password_reset_token_hash = hash_token(token)
        user.password_reset_expires_at = token_expiry(PASSWORD_RESET_HOURS)
        await self.audit.log(
            AuditAction.PASSWORD_RESET_REQUESTED,
            resource_type=EntityKind.USER.value,
            resource_id=user.id,
            user_id=user.id,
        )
        await self._send_link(
            user,
            "reset",
            "reset-password",
            token,
            "Reset your password",
            f"A password reset was requested for your account. The link is valid for {PASSWORD_RESET_HOURS} hour.",
        )
        await self.db.commit()

    async def reset_password(self, token: str, new_password: str) -> None:
        check_password_strength(new_password)

        async def op() -> None:
            result = await self.db.execute(select(User).where(User.password_reset_token_hash == hash_token(token)))
            user = result.scalar_one_or_none()
            if user is None or not user.password_reset_expires_at or user.password_reset_expires_at < datetime.utcnow():
                raise ValidationError("Invalid or expired password reset token")
            user.password_hash = hash_password(new_password)
            user.password_reset_token_hash = None
            user.password_reset_expires_at = None
            await self.audit.log(
                AuditAction.PASSWORD_RESET,
                resource_type=EntityKind.USER.value,
                resource_id=user.id,
                user_id=user.id,
            )

        await run_in_transaction(self.db, op)

    async def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if not user.password_hash or not verify_password(current_password, user.password_hash):
            raise AuthenticationError("Current password is incorrect")
        check_password_strength(new_password)
        user.password_hash = hash_password(new_password)
        await self.audit.log(
            AuditAction.PASSWORD_CHANGED,
            resource_type=EntityKind.USER.value,
            resource_id=user.id,
            user_id=user.id,
        )
        await self.db.commit()


class UserService:
    """Profile self-service and administration of users."""

    def __init__(self, db: AsyncSession, actor: Actor, audit: AuditService):
        self.db = db
        self.actor = actor
        self.audit = audit
        self.authorizer = Authorizer(db)
        self.notifier = NotificationService(db, audit)

    async def get(self, user_id: uuid.UUID) -> User:
        user = await self.db.get(User, user_id, populate_existing=True)
        if user is None or user.is_synthetic:
            raise NotFoundError("User not found")
        return user

    async def update_profile(self, user: User, changes: dict[str, Any]) -> User:
        await self.authorizer.require(self.actor, Action.EDIT_OWN_PROFILE, Target.for_user(user))
        old, new = self._apply(user, changes, PROFILE_FIELDS)
        if new:
            await self.audit.log(
                AuditAction.UPDATE,
                resource_type=EntityKind.USER.value,
                resource_id=user.id,
                user_id=self.actor.id,
                old_value=old,
                new_value=new,
            )
        await self.db.commit()
        return user

    def _apply(self, user: User, changes: dict[str, Any], fields: tuple[str, ...]) -> tuple[dict, dict]:
        old, new = {}, {}
        for field in fields:
            value = changes.get(field)
            if value is None:
                continue
            if field == "notification_channels":
                value = normalise_channels(value)
            if field == "email":
                value = value.strip().lower()
            if getattr(user, field) != value:
                old[field], new[field] = getattr(user, field), value
                setattr(user, field, value)
        return old, new

    async def list_users(
        self,
        role: Optional[GlobalRole] = None,
        status: Optional[RegistrationStatus] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        await self.authorizer.require(self.actor, Action.MANAGE_USERS, None)
        query = select(User).where(User.is_synthetic == False)
        if role:
            query = query.where(User.role == role)
        if status:
            query = query.where(User.registration_status == status)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(User.email.ilike(pattern), User.first_name.ilike(pattern), User.last_name.ilike(pattern))
            )
        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        result = await self.db.execute(query.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit))
        return Page(items=list(result.scalars().all()), total=total, page=page, limit=limit)

    async def create_user(self, data: dict[str, Any]) -> User:
        """Administrator-created accounts are active immediately."""
        await self.authorizer.require(self.actor, Action.MANAGE_USERS, None)
        email = data["email"].strip().lower()
        existing = await self.db.execute(select(User.id).where(func.lower(User.email) == email))
        if existing.scalar_one_or_none():
            raise ConflictError("An account with this email address already exists")
        password = data.get("password")
        if password:
            check_password_strength(password)

        async def op() -> User:
            user = User(
                id=uuid.uuid4(),
                email=email,
                first_name=data.get("first_name"),
                last_name=data.get("last_name"),
                phone=data.get("phone"),
                password_hash=hash_password(password) if password else None,
                role=GlobalRole(data.get("role") or GlobalRole.TENANT),
                registration_status=RegistrationStatus.ACTIVE,
                is_email_verified=True,
            )
            self.db.add(user)
            await self.db.flush()
            await self.audit.log(
                AuditAction.CREATE,
                resource_type=EntityKind.USER.value,
                resource_id=user.id,
                user_id=self.actor.id,
                new_value={"email": user.email, "role": user.role},
            )
            return user

        return await run_in_transaction(self.db, op)

    async def update_user(self, user_id: uuid.UUID, changes: dict[str, Any]) -> User:
        await self.authorizer.require(self.actor, Action.MANAGE_USERS, None)

        async def op() -> User:
            user = await self.get(user_id)
            old, new = self._apply(user, changes, ADMIN_FIELDS)
            if new:
                await self.audit.log(
                    AuditAction.UPDATE,
                    resource_type=EntityKind.USER.value,
                    resource_id=user.id,
                    user_id=self.actor.id,
                    old_value=old,
                    new_value=new,
                )
            return user

        return await run_in_transaction(self.db, op)

    async def deactivate(self, user_id: uuid.UUID) -> User:
        """Soft delete: the account can no longer sign in and its grants lapse."""

        async def op() -> User:
            user = await self.get(user_id)
            await self.authorizer.require(self.actor, Action.DELETE_USER, Target.for_user(user))
            old_status = user.registration_status
            user.registration_status = RegistrationStatus.DEACTIVATED
            await self.db.execute(
                update(PropertyUser).where(PropertyUser.user_id == user.id).values(is_active=False)
            )
            await self.audit.log(
                AuditAction.USER_DEACTIVATED,
                resource_type=EntityKind.USER.value,
                resource_id=user.id,
                user_id=self.actor.id,
                old_value={"registration_status": old_status},
                new_value={"registration_status": user.registration_status},
            )
            return user

        return await run_in_transaction(self.db, op)

    async def _approval_scope(self, user: User) -> Optional[list[uuid.UUID]]:
        """Properties whose grants the actor may activate; None means all of them."""
        if self.actor.role == GlobalRole.ADMIN:
            return None
        if user.role not in PROPERTY_APPROVABLE_ROLES:
            return []
        result = await self.db.execute(select(PropertyUser.property_id).where(PropertyUser.user_id == user.id))
        held = set(result.scalars().all())
        return [pid for pid in await self.authorizer.managed_property_ids(self.actor) if pid in held]

    async def approve(self, user_id: uuid.UUID) -> User:
        """Activate a pending account and its property grants. No-op when already active.

        Administrators approve anyone. Landlords and property managers approve
        tenants and vendors holding a grant on a property they manage, and only
        those grants are activated.
        """

        async def op() -> User:
            user = await self.get(user_id)
            scope = await self._approval_scope(user)
            target = Target.for_user(user, property_id=scope[0] if scope else None)
            await self.authorizer.require(self.actor, Action.APPROVE_USER, target)
            if user.registration_status == RegistrationStatus.ACTIVE:
                return user
            if user.registration_status == RegistrationStatus.DEACTIVATED:
                raise StateError("Deactivated accounts cannot be approved")
            old_status = user.registration_status
            user.registration_status = RegistrationStatus.ACTIVE
            user.is_email_verified = True
            now = datetime.utcnow()
            grants = update(PropertyUser).where(
                PropertyUser.user_id == user.id,
                or_(PropertyUser.end_date.is_(None), PropertyUser.end_date > now),
            )
            if scope is not None:
                grants = grants.where(PropertyUser.property_id.in_(scope))
            await self.db.execute(grants.values(is_active=True))
            await self.audit.log(
                AuditAction.USER_APPROVED,
                resource_type=EntityKind.USER.value,
                resource_id=user.id,
                user_id=self.actor.id,
                old_value={"registration_status": old_status},
                new_value={"registration_status": user.registration_status},
            )
            await self.notifier.notify(
                [user],
                NotificationKind.USER_APPROVED,
                "Your account has been approved. You can now sign in.",
                related=Related(EntityKind.USER, user.id),
                sender_id=self.actor.id,
                link=f"{settings.frontend_url.rstrip('/')}/dashboard",
            )
            return user

        return await run_in_transaction(self.db, op)

    async def change_role(self, user_id: uuid.UUID, role: GlobalRole) -> User:
        async def op() -> User:
            user = await self.get(user_id)
            await self.authorizer.require(self.actor, Action.CHANGE_ROLE, Target.for_user(user, new_role=role))
            if user.role == role:
                return user
            old_role = user.role
            user.role = role
            await self.audit.log(
                AuditAction.USER_ROLE_UPDATED,
                resource_type=EntityKind.USER.value,
                resource_id=user.id,
                user_id=self.actor.id,
                old_value={"role": old_role},
                new_value={"role": role},
            )
            await self.notifier.notify(
                [user],
                NotificationKind.ROLE_UPDATED,
                f"Your role has been changed to {role.value}.",
                related=Related(EntityKind.USER, user.id),
                sender_id=self.actor.id,
            )
            return user

        return await run_in_transaction(self.db, op)
