"""Authorization resolver.

``decide(actor, action, target, access)`` reduces an (actor, action, target)
triple to Allow or Deny(reason). It is pure: the caller supplies the actor's
PropertyUser grants for the target property (``PropertyAccess``), which
``Authorizer`` loads with a single query.

Clauses are evaluated in order; the first that matches wins:

1. global admin: allow, except demoting themselves or deleting another
   admin/landlord/property manager
2. self-scoped actions on the actor's own record: allow
3. load R = roles of the actor's active grants on the target property
4. management predicate M = R ∩ {landlord, propertymanager, admin_access};
   management holds every action on the property, management-only actions
   are denied without it
5. creator of the entity: read/update/comment/upload/verify/feedback
6. current User-kind assignee: read/transition/upload/comment
7. tenant of the target unit: read/comment/create request
8. deny
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.errors import AuthorizationError
from fixit.models.assignable import Assignee
from fixit.models.enums import (
    AssigneeKind,
    EntityKind,
    GlobalRole,
    MANAGEMENT_ROLES,
    PropertyRole,
)
from fixit.models.property import PropertyUser


class Action(str, Enum):
    CREATE = "create"
    CREATE_REQUEST = "create_request"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    ASSIGN = "assign"
    TRANSITION_STATUS = "transition_status"
    CANCEL = "cancel"
    REOPEN = "reopen"
    ARCHIVE = "archive"
    VERIFY = "verify"
    SUBMIT_FEEDBACK = "submit_feedback"
    UPLOAD_MEDIA = "upload_media"
    DELETE_MEDIA = "delete_media"
    COMMENT = "comment"
    COMMENT_INTERNAL = "comment_internal"
    ENABLE_PUBLIC_LINK = "enable_public_link"
    DISABLE_PUBLIC_LINK = "disable_public_link"
    APPROVE_USER = "approve_user"
    INVITE_USER = "invite_user"
    CHANGE_ROLE = "change_role"
    DELETE_USER = "delete_user"
    MANAGE_USERS = "manage_users"
    VIEW_ROSTER = "view_roster"
    MANAGE_ROSTER = "manage_roster"
    MANAGE_VENDORS = "manage_vendors"
    GENERATE_DOCUMENT = "generate_document"
    EXPORT_REPORT = "export_report"
    READ_AUDIT_LOG = "read_audit_log"
    EDIT_OWN_PROFILE = "edit_own_profile"
    CHANGE_OWN_PASSWORD = "change_own_password"
    READ_OWN_NOTIFICATIONS = "read_own_notifications"


SELF_SCOPED_ACTIONS = frozenset(
    {Action.EDIT_OWN_PROFILE, Action.CHANGE_OWN_PASSWORD, Action.READ_OWN_NOTIFICATIONS}
)

# Denied without the management predicate, whatever the relationship
MANAGEMENT_ONLY_ACTIONS = frozenset(
    {
        Action.CREATE,
        Action.DELETE,
        Action.ASSIGN,
        Action.CANCEL,
        Action.REOPEN,
        Action.ARCHIVE,
        Action.DELETE_MEDIA,
        Action.COMMENT_INTERNAL,
        Action.ENABLE_PUBLIC_LINK,
        Action.DISABLE_PUBLIC_LINK,
        Action.APPROVE_USER,
        Action.INVITE_USER,
        Action.VIEW_ROSTER,
        Action.MANAGE_ROSTER,
        Action.MANAGE_VENDORS,
        Action.GENERATE_DOCUMENT,
        Action.EXPORT_REPORT,
    }
)

# Admin-only actions never granted through property roles
ADMIN_ONLY_ACTIONS = frozenset(
    {Action.CHANGE_ROLE, Action.DELETE_USER, Action.MANAGE_USERS, Action.READ_AUDIT_LOG}
)

CREATOR_ACTIONS = frozenset(
    {
        Action.READ,
        Action.UPDATE,
        Action.COMMENT,
        Action.UPLOAD_MEDIA,
        Action.VERIFY,
        Action.SUBMIT_FEEDBACK,
    }
)

ASSIGNEE_ACTIONS = frozenset(
    {Action.READ, Action.TRANSITION_STATUS, Action.UPLOAD_MEDIA, Action.COMMENT}
)

TENANT_ACTIONS = frozenset({Action.READ, Action.COMMENT, Action.CREATE_REQUEST})

PROTECTED_ROLES = frozenset({GlobalRole.ADMIN, GlobalRole.LANDLORD, GlobalRole.PROPERTY_MANAGER})


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


def Allow(reason: str = "allowed") -> Decision:
    return Decision(True, reason)


def Deny(reason: str) -> Decision:
    return Decision(False, reason)


@dataclass(frozen=True)
class Actor:
    id: uuid.UUID
    role: GlobalRole


@dataclass(frozen=True)
class Target:
    """What an action is applied to.

    ``kind`` is None for class-level targets (list/create endpoints).
    ``user_id``/``user_role`` describe a user target; ``new_role`` is the
    requested role for CHANGE_ROLE.
    """

    kind: Optional[EntityKind] = None
    property_id: Optional[uuid.UUID] = None
    unit_id: Optional[uuid.UUID] = None
    created_by_id: Optional[uuid.UUID] = None
    assignee: Optional[Assignee] = None
    user_id: Optional[uuid.UUID] = None
    user_role: Optional[GlobalRole] = None
    new_role: Optional[GlobalRole] = None

    @classmethod
    def for_item(cls, item, kind: EntityKind) -> "Target":
        """Target for a Request or ScheduledMaintenance row."""
        return cls(
            kind=kind,
            property_id=item.property_id,
            unit_id=item.unit_id,
            created_by_id=item.created_by_id,
            assignee=item.assignee,
        )

    @classmethod
    def for_user(
        cls,
        user,
        new_role: Optional[GlobalRole] = None,
        property_id: Optional[uuid.UUID] = None,
    ) -> "Target":
        """``property_id`` scopes approval to a property on which the user holds a grant."""
        return cls(
            kind=EntityKind.USER,
            property_id=property_id,
            user_id=user.id,
            user_role=user.role,
            new_role=new_role,
        )

    @classmethod
    def for_property(
        cls,
        property_id: Optional[uuid.UUID],
        unit_id: Optional[uuid.UUID] = None,
        kind: Optional[EntityKind] = EntityKind.PROPERTY,
    ) -> "Target":
        return cls(kind=kind, property_id=property_id, unit_id=unit_id)


@dataclass(frozen=True)
class PropertyAccess:
    """The actor's active grants on one property."""

    roles: frozenset[PropertyRole] = field(default_factory=frozenset)
    tenant_unit_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)

    @property
    def is_management(self) -> bool:
        return bool(self.roles & MANAGEMENT_ROLES)

    @classmethod
    def from_rows(cls, rows: list[PropertyUser], now: Optional[datetime] = None) -> "PropertyAccess":
        now = now or datetime.utcnow()
        roles: set[PropertyRole] = set()
        units: set[uuid.UUID] = set()
        for row in rows:
            if not row.is_active or (row.end_date is not None and row.end_date <= now):
                continue
            row_roles = row.role_set
            roles |= row_roles
            if PropertyRole.TENANT in row_roles and row.unit_id is not None:
                units.add(row.unit_id)
        return cls(frozenset(roles), frozenset(units))


NO_ACCESS = PropertyAccess()


def _coerce_action(action: Union[Action, str]) -> Optional[Action]:
    if isinstance(action, Action):
        return action
    try:
        return Action(action)
    except ValueError:
        return None


def decide(
    actor: Optional[Actor],
    action: Union[Action, str],
    target: Optional[Target],
    access: PropertyAccess = NO_ACCESS,
) -> Decision:
    """Allow or deny ``action`` by ``actor`` on ``target``. Never raises."""
    if actor is None:
        return Deny("Authentication required")
    act = _coerce_action(action)
    if act is None:
        return Deny(f"Unknown action: {action}")
    target = target or Target()

    # 1. Global admin
    if actor.role == GlobalRole.ADMIN:
        if act == Action.CHANGE_ROLE and target.user_id == actor.id and target.new_role not in (None, GlobalRole.ADMIN):
            return Deny("Administrators cannot remove their own admin role")
        if act == Action.DELETE_USER and target.user_id != actor.id and target.user_role in PROTECTED_ROLES:
            return Deny("Administrators cannot delete other administrators, landlords or property managers")
        return Allow("admin")

    # 2. Self-scoped
    if act in SELF_SCOPED_ACTIONS:
        if target.user_id is not None and target.user_id == actor.id:
            return Allow("self")
        return Deny("You can only perform this action on your own account")

    if act in ADMIN_ONLY_ACTIONS:
        return Deny("Administrator privileges required")

    # 3/4. Property roles and the management predicate
    if target.property_id is not None and access.is_management:
        return Allow("management")
    if act in MANAGEMENT_ONLY_ACTIONS:
        return Deny("Property management privileges required")

    # 5. Creator
    if target.created_by_id is not None and target.created_by_id == actor.id and act in CREATOR_ACTIONS:
        return Allow("creator")

    # 6. Current assignee (platform users only)
    assignee = target.assignee
    if (
        assignee is not None
        and assignee.kind == AssigneeKind.USER
        and assignee.id == actor.id
        and act in ASSIGNEE_ACTIONS
    ):
        return Allow("assignee")

    # 7. Tenant of the target unit
    if (
        actor.role == GlobalRole.TENANT
        and act in TENANT_ACTIONS
        and target.property_id is not None
        and target.unit_id is not None
        and PropertyRole.TENANT in access.roles
        and target.unit_id in access.tenant_unit_ids
    ):
        return Allow("tenant")

    # 8. Default
    return Deny("You are not allowed to perform this action")


class Authorizer:
    """Loads property grants and applies ``decide``; raises on Deny."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def access_for(self, actor: Actor, property_id: Optional[uuid.UUID]) -> PropertyAccess:
        if property_id is None:
            return NO_ACCESS
        now = datetime.utcnow()
        result = await self.db.execute(
            select(PropertyUser).where(
                PropertyUser.user_id == actor.id,
                PropertyUser.property_id == property_id,
                PropertyUser.is_active == True,
                or_(PropertyUser.end_date.is_(None), PropertyUser.end_date > now),
            )
        )
        return PropertyAccess.from_rows(list(result.scalars().all()), now)

    async def decide(self, actor: Actor, action: Action, target: Optional[Target]) -> Decision:
        access = NO_ACCESS
        if actor.role != GlobalRole.ADMIN and target is not None:
            access = await self.access_for(actor, target.property_id)
        return decide(actor, action, target, access)

    async def require(self, actor: Actor, action: Action, target: Optional[Target]) -> Decision:
        decision = await self.decide(actor, action, target)
        if not decision.allowed:
            raise AuthorizationError(decision.reason)
        return decision

    async def is_management(self, actor: Actor, property_id: Optional[uuid.UUID]) -> bool:
        """Management predicate M for (actor, property)."""
        if actor.role == GlobalRole.ADMIN:
            return True
        return (await self.access_for(actor, property_id)).is_management

    async def managed_property_ids(self, actor: Actor) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(PropertyUser).where(
                PropertyUser.user_id == actor.id,
                PropertyUser.is_active == True,
            )
        )
        return sorted(
            {row.property_id for row in result.scalars().all() if row.role_set & MANAGEMENT_ROLES},
            key=str,
        )

    async def tenant_unit_ids(self, actor: Actor) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(PropertyUser).where(
                and_(
                    PropertyUser.user_id == actor.id,
                    PropertyUser.is_active == True,
                    PropertyUser.has_tenant_role == True,
                )
            )
        )
        return [row.unit_id for row in result.scalars().all() if row.unit_id is not None]
