"""Property invitations: invite, accept and revoke.

Management invites someone by email to a property (a unit for tenants).
The emailed link carries a single-use token; only its SHA-256 is stored.
Accepting the invite sets up the account when needed and creates or
reactivates the PropertyUser grant.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, select, update
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
from fixit.core.security import create_access_token, hash_password, hash_token, verify_password
from fixit.models.enums import (
    AuditAction,
    EntityKind,
    GlobalRole,
    InviteStatus,
    PropertyRole,
    RegistrationStatus,
)
from fixit.models.invite import Invite
from fixit.models.property import Property, PropertyUser, Unit
from fixit.models.user import User
from fixit.services.accounts import check_password_strength
from fixit.services.audit import AuditService
from fixit.services.authorization import Action, Actor, Authorizer, Target
from fixit.services.jobs import JOB_SEND_EMAIL, JobsService

logger = logging.getLogger(__name__)

settings = get_settings()

# Global role given to an account created through an invite, by precedence
INVITE_ACCOUNT_ROLES = (
    (PropertyRole.LANDLORD, GlobalRole.LANDLORD),
    (PropertyRole.PROPERTY_MANAGER, GlobalRole.PROPERTY_MANAGER),
    (PropertyRole.TENANT, GlobalRole.TENANT),
    (PropertyRole.VENDOR_ACCESS, GlobalRole.VENDOR),
)
INVITABLE_ROLES = frozenset(role for role, _ in INVITE_ACCOUNT_ROLES)


def account_role_for(roles: frozenset[PropertyRole]) -> GlobalRole:
    for property_role, global_role in INVITE_ACCOUNT_ROLES:
        if property_role in roles:
            return global_role
    return GlobalRole.TENANT


class InviteService:
    def __init__(self, db: AsyncSession, audit: AuditService, actor: Optional[Actor] = None):
        self.db = db
        self.audit = audit
        self.actor = actor
        self.authorizer = Authorizer(db)
        self.jobs = JobsService(db)

    async def _find_user(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(func.lower(User.email) == email))
        return result.scalar_one_or_none()

    async def _by_token(self, token: str) -> Invite:
        result = await self.db.execute(select(Invite).where(Invite.token_hash == hash_token(token)))
        invite = result.scalar_one_or_none()
        if invite is None:
            raise NotFoundError("Invalid or expired invitation")
        if invite.status == InviteStatus.PENDING and not invite.is_usable():
            invite.status = InviteStatus.EXPIRED
            await self.db.commit()
        if not invite.is_usable():
            raise NotFoundError("Invalid or expired invitation")
        return invite

    # Management side

    async def create(self, data: dict[str, Any]) -> tuple[Invite, str]:
        """Invite ``email`` to a property. Returns the invite and the raw token."""
        email = data["email"].strip().lower()
        property_id: uuid.UUID = data["property_id"]
        unit_id: Optional[uuid.UUID] = data.get("unit_id")
        roles = frozenset(PropertyRole(r) for r in data["roles"])

        prop = await self.db.get(Property, property_id)
        if prop is None or not prop.is_active:
            raise NotFoundError("Property not found")
        await self.authorizer.require(self.actor, Action.INVITE_USER, Target.for_property(property_id))

        if not roles or not roles <= INVITABLE_ROLES:
            raise ValidationError(
                "Invites can grant landlord, propertymanager, tenant or vendor_access",
                errors=[{"field": "roles", "reason": "not invitable"}],
            )
        if PropertyRole.TENANT in roles and unit_id is None:
            raise ValidationError("A tenant invite requires a unit", errors=[{"field": "unit_id", "reason": "required"}])
        if unit_id is not None:
            unit = await self.db.get(Unit, unit_id)
            if unit is None or unit.property_id != property_id:
                raise ValidationError("Unit does not belong to the property", errors=[{"field": "unit_id", "reason": "mismatch"}])

        user = await self._find_user(email)
        if user is not None:
            if user.is_synthetic or user.registration_status == RegistrationStatus.DEACTIVATED:
                raise ValidationError("This account cannot be invited")
            result = await self.db.execute(
                select(PropertyUser).where(
                    PropertyUser.user_id == user.id,
                    PropertyUser.property_id == property_id,
                    PropertyUser.unit_id == unit_id if unit_id else PropertyUser.unit_id.is_(None),
                    PropertyUser.is_active == True,
                )
            )
            if any(roles <= row.role_set for row in result.scalars().all()):
                raise ConflictError(f"{email} already holds these roles on this property")

        now = datetime.utcnow()
        pending = await self.db.execute(
            select(Invite.id).where(
                Invite.email == email,
                Invite.property_id == property_id,
                Invite.status == InviteStatus.PENDING,
                Invite.expires_at > now,
            )
        )
        if pending.first() is not None:
            raise ConflictError(f"A pending invitation for {email} already exists on this property")

        token = secrets.token_urlsafe(32)

        async def op() -> Invite:
            invitee = user
            if invitee is None:
                # Placeholder account until the invite is accepted
                invitee = User(
                    id=uuid.uuid4(),
                    email=email,
                    role=account_role_for(roles),
                    registration_status=RegistrationStatus.PENDING_INVITE_ACCEPTANCE,
                    is_email_verified=False,
                )
                self.db.add(invitee)
            invite = Invite(
                id=uuid.uuid4(),
                email=email,
                roles=sorted(r.value for r in roles),
                property_id=property_id,
                unit_id=unit_id,
                token_hash=hash_token(token),
                status=InviteStatus.PENDING,
                expires_at=now + timedelta(hours=settings.invite_expiry_hours),
                invited_by_id=self.actor.id,
            )
            self.db.add(invite)
            await self.db.flush()
            await self.audit.log(
                AuditAction.INVITE_SENT,
                resource_type=EntityKind.INVITE.value,
                resource_id=invite.id,
                user_id=self.actor.id,
                new_value={"email": email, "property_id": property_id, "unit_id": unit_id, "roles": invite.roles},
            )
            await self.jobs.enqueue(
                JOB_SEND_EMAIL,
                {
                    "to": email,
                    "subject": f"{settings.app_name}: You have been invited to {prop.name}",
                    "text": (
                        f"You have been invited to join {prop.name} on {settings.app_name}. "
                        f"The invitation is valid for {settings.invite_expiry_hours} hours."
                        f"\n\n{invite_link(token)}"
                    ),
                    "html": None,
                },
                unique_scope=f"{JOB_SEND_EMAIL}:invite:{invite.id}",
            )
            return invite

        invite = await run_in_transaction(self.db, op)
        logger.info(f"[INVITE] Invite {invite.id} sent to property {property_id} by {self.actor.id}")
        return invite, token

    async def list_invites(
        self,
        property_id: Optional[uuid.UUID] = None,
        status: Optional[InviteStatus] = None,
    ) -> list[Invite]:
        query = select(Invite)
        if property_id is not None:
            await self.authorizer.require(self.actor, Action.INVITE_USER, Target.for_property(property_id))
            query = query.where(Invite.property_id == property_id)
        elif self.actor.role != GlobalRole.ADMIN:
            managed = await self.authorizer.managed_property_ids(self.actor)
            query = query.where(Invite.property_id.in_(managed))
        if status is not None:
            query = query.where(Invite.status == status)
        result = await self.db.execute(query.order_by(Invite.created_at.desc()))
        return list(result.scalars().all())

    async def revoke(self, invite_id: uuid.UUID) -> Invite:
        async def op() -> Invite:
            invite = await self.db.get(Invite, invite_id, populate_existing=True)
            if invite is None:
                raise NotFoundError("Invitation not found")
            await self.authorizer.require(self.actor, Action.INVITE_USER, Target.for_property(invite.property_id))
            if invite.status != InviteStatus.PENDING:
                raise StateError(f"Only pending invitations can be revoked (this one is {invite.status.value})")
            invite.status = InviteStatus.REVOKED
            invite.revoked_by_id = self.actor.id
            invite.revoked_at = datetime.utcnow()
            await self.audit.log(
                AuditAction.INVITE_REVOKED,
                resource_type=EntityKind.INVITE.value,
                resource_id=invite.id,
                user_id=self.actor.id,
                old_value={"status": InviteStatus.PENDING},
                new_value={"status": invite.status},
            )
            return invite

        return await run_in_transaction(self.db, op)

    # Invitee side

    async def describe(self, token: str) -> tuple[Invite, Property]:
        invite = await self._by_token(token)
        return invite, await self.db.get(Property, invite.property_id)

    async def accept(self, token: str, data: dict[str, Any]) -> tuple[User, str]:
        """Accept an invite; returns the account and a session token.

        New (placeholder) accounts choose their password here. Existing
        accounts confirm theirs.
        """
        invite = await self._by_token(token)
        password = data.get("password") or ""
        user = await self._find_user(invite.email)
        if user is not None and user.registration_status == RegistrationStatus.DEACTIVATED:
            raise AuthorizationError("Your account has been deactivated. Please contact support.")
        new_account = (
            user is None
            or user.registration_status == RegistrationStatus.PENDING_INVITE_ACCEPTANCE
            or not user.password_hash
        )
        if new_account:
            check_password_strength(password)
        elif not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid credentials")

        account_id = user.id if user is not None else uuid.uuid4()

        async def op() -> User:
            # Single use: only one acceptance can flip the row out of pending
            claimed = await self.db.execute(
                update(Invite)
                .where(Invite.id == invite.id, Invite.status == InviteStatus.PENDING)
                .values(status=InviteStatus.ACCEPTED, accepted_at=datetime.utcnow(), accepted_by_id=account_id)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                raise ConflictError("This invitation has already been used")

            account = user
            if account is None:
                account = User(
                    id=account_id,
                    email=invite.email,
                    role=account_role_for(invite.role_set),
                )
                self.db.add(account)
            if new_account:
                account.password_hash = hash_password(password)
                account.first_name = data.get("first_name") or account.first_name
                account.last_name = data.get("last_name") or account.last_name
                account.phone = data.get("phone") or account.phone
            # The emailed token proves ownership of the address
            account.is_email_verified = True
            account.registration_status = RegistrationStatus.ACTIVE
            await self.db.flush()

            grant = await self._upsert_grant(invite, account.id)
            await self.audit.log(
                AuditAction.INVITE_ACCEPTED,
                resource_type=EntityKind.INVITE.value,
                resource_id=invite.id,
                user_id=account.id,
                new_value={"property_user_id": grant.id, "roles": grant.roles, "new_account": new_account},
            )
            return account

        account = await run_in_transaction(self.db, op, attempts=1)
        logger.info(f"[INVITE] Invite {invite.id} accepted by {account.id}")
        return account, create_access_token(account.id, account.role.value)

    async def _upsert_grant(self, invite: Invite, user_id: uuid.UUID) -> PropertyUser:
        result = await self.db.execute(
            select(PropertyUser).where(
                PropertyUser.user_id == user_id,
                PropertyUser.property_id == invite.property_id,
                PropertyUser.unit_id == invite.unit_id if invite.unit_id else PropertyUser.unit_id.is_(None),
            )
        )
        grant = result.scalars().first()
        if grant is None:
            grant = PropertyUser(
                id=uuid.uuid4(),
                user_id=user_id,
                property_id=invite.property_id,
                unit_id=invite.unit_id,
                invited_by_id=invite.invited_by_id,
            )
            grant.set_roles(invite.role_set)
            self.db.add(grant)
        else:
            grant.set_roles(grant.role_set | invite.role_set)
            grant.end_date = None
        grant.is_active = True
        await self.db.flush()
        return grant


def invite_link(token: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/accept-invite/{token}"
