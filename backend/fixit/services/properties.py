"""Properties, units and the per-property roster (PropertyUser grants)."""

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.database import run_in_transaction
from fixit.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from fixit.models.enums import AuditAction, EntityKind, GlobalRole, PropertyRole
from fixit.models.property import Property, PropertyUser, Unit
from fixit.models.user import User
from fixit.services.audit import AuditService
from fixit.services.authorization import Action, Actor, Authorizer, Target

logger = logging.getLogger(__name__)

# Global role -> roster role granted to the creator of a property
CREATOR_ROLES = {
    GlobalRole.LANDLORD: PropertyRole.LANDLORD,
    GlobalRole.PROPERTY_MANAGER: PropertyRole.PROPERTY_MANAGER,
    GlobalRole.ADMIN: PropertyRole.ADMIN_ACCESS,
}


class PropertyService:
    def __init__(self, db: AsyncSession, actor: Actor, audit: AuditService):
        self.db = db
        self.actor = actor
        self.audit = audit
        self.authorizer = Authorizer(db)

    async def _member_property_ids(self) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(PropertyUser.property_id).where(
                PropertyUser.user_id == self.actor.id,
                PropertyUser.is_active == True,
            )
        )
        return list(set(result.scalars().all()))

    async def get(self, property_id: uuid.UUID) -> Property:
        prop = await self.db.get(Property, property_id)
        if prop is None:
            raise NotFoundError("Property not found")
        if self.actor.role != GlobalRole.ADMIN and property_id not in await self._member_property_ids():
            # Same answer as a missing property
            raise NotFoundError("Property not found")
        return prop

    async def unit_counts(self, property_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
        if not property_ids:
            return {}
        result = await self.db.execute(
            select(Unit.property_id, func.count(Unit.id))
            .where(Unit.property_id.in_(property_ids))
            .group_by(Unit.property_id)
        )
        return {pid: count for pid, count in result.all()}

    async def list_properties(self) -> list[Property]:
        query = select(Property).where(Property.is_active == True)
        if self.actor.role != GlobalRole.ADMIN:
            query = query.where(Property.id.in_(await self._member_property_ids()))
        result = await self.db.execute(query.order_by(Property.name))
        return list(result.scalars().all())

    async def create(self, data: dict[str, Any]) -> Property:
        """Create a property; the creator becomes its manager on the roster."""
        creator_role = CREATOR_ROLES.get(self.actor.role)
        if creator_role is None:
            raise AuthorizationError("Only landlords, property managers and admins can create properties")

        async def op() -> Property:
            prop = Property(id=uuid.uuid4(), created_by_id=self.actor.id, **data)
            self.db.add(prop)
            await self.db.flush()
            grant = PropertyUser(id=uuid.uuid4(), user_id=self.actor.id, property_id=prop.id, invited_by_id=self.actor.id)
            grant.set_roles({creator_role})
            self.db.add(grant)
            await self.audit.log(
                AuditAction.CREATE,
                resource_type=EntityKind.PROPERTY.value,
                resource_id=prop.id,
                user_id=self.actor.id,
                new_value={"name": prop.name, "property_type": prop.property_type},
            )
            return prop

        prop = await run_in_transaction(self.db, op)
        logger.info(f"[PROPERTY] Created property {prop.id} by {self.actor.id}")
        return prop

    async def update(self, property_id: uuid.UUID, changes: dict[str, Any]) -> Property:
        async def op() -> Property:
            prop = await self.get(property_id)
            await self.authorizer.require(self.actor, Action.UPDATE, Target.for_property(prop.id))
            old, new = {}, {}
            for field, value in changes.items():
                if value is not None and getattr(prop, field) != value:
                    old[field], new[field] = getattr(prop, field), value
                    setattr(prop, field, value)
            if new:
                await self.audit.log(
                    AuditAction.UPDATE,
                    resource_type=EntityKind.PROPERTY.value,
                    resource_id=prop.id,
                    user_id=self.actor.id,
                    old_value=old,
                    new_value=new,
                )
            return prop

        return await run_in_transaction(self.db, op)

    # Units

    async def list_units(self, property_id: uuid.UUID) -> list[Unit]:
        await self.get(property_id)
        result = await self.db.execute(
            select(Unit).where(Unit.property_id == property_id).order_by(Unit.unit_name)
        )
        return list(result.scalars().all())

    async def get_unit(self, property_id: uuid.UUID, unit_id: uuid.UUID) -> Unit:
        await self.get(property_id)
        unit = await self.db.get(Unit, unit_id)
        if unit is None or unit.property_id != property_id:
            raise NotFoundError("Unit not found")
        return unit

    async def add_unit(self, property_id: uuid.UUID, data: dict[str, Any]) -> Unit:
        await self.get(property_id)
        await self.authorizer.require(self.actor, Action.MANAGE_ROSTER, Target.for_property(property_id))
        existing = await self.db.execute(
            select(Unit.id).where(Unit.property_id == property_id, Unit.unit_name == data["unit_name"])
        )
        if existing.scalar_one_or_none():
            raise ConflictError(f"Unit {data['unit_name']} already exists on this property")

        async def op() -> Unit:
            unit = Unit(id=uuid.uuid4(), property_id=property_id, **data)
            self.db.add(unit)
            await self.db.flush()
            await self.audit.log(
                AuditAction.CREATE,
                resource_type=EntityKind.UNIT.value,
                resource_id=unit.id,
                user_id=self.actor.id,
                new_value={"property_id": property_id, "unit_name": unit.unit_name},
            )
            return unit

        return await run_in_transaction(self.db, op)

    # Roster

    async def roster(self, property_id: uuid.UUID, include_inactive: bool = False) -> list[PropertyUser]:
        await self.get(property_id)
        await self.authorizer.require(self.actor, Action.VIEW_ROSTER, Target.for_property(property_id))
        query = select(PropertyUser).where(PropertyUser.property_id == property_id)
        if not include_inactive:
            query = query.where(PropertyUser.is_active == True)
        result = await self.db.execute(query.order_by(PropertyUser.created_at))
        return list(result.scalars().all())

    async def add_member(
        self,
        property_id: uuid.UUID,
        user_id: uuid.UUID,
        roles: list[PropertyRole],
        unit_id: Optional[uuid.UUID] = None,
        end_date: Optional[datetime] = None,
    ) -> PropertyUser:
        await self.get(property_id)
        await self.authorizer.require(self.actor, Action.MANAGE_ROSTER, Target.for_property(property_id))
        if PropertyRole.TENANT in roles and unit_id is None:
            raise ValidationError("A tenant grant requires a unit", errors=[{"field": "unit_id", "reason": "required"}])
        if PropertyRole.ADMIN_ACCESS in roles and self.actor.role != GlobalRole.ADMIN:
            raise AuthorizationError("Only administrators can grant admin access")
        if unit_id is not None:
            await self.get_unit(property_id, unit_id)
        user = await self.db.get(User, user_id)
        if user is None or user.is_synthetic:
            raise NotFoundError("User not found")

        async def op() -> PropertyUser:
            grant = PropertyUser(
                id=uuid.uuid4(),
                user_id=user_id,
                property_id=property_id,
                unit_id=unit_id,
                invited_by_id=self.actor.id,
                end_date=end_date,
                # Grants of accounts still awaiting approval activate on approval
                is_active=user.is_active,
            )
            grant.set_roles(roles)
            self.db.add(grant)
            await self.db.flush()
            await self.audit.log(
                AuditAction.PROPERTY_USER_ADDED,
                resource_type=EntityKind.PROPERTY.value,
                resource_id=property_id,
                user_id=self.actor.id,
                new_value={"property_user_id": grant.id, "user_id": user_id, "unit_id": unit_id, "roles": grant.roles},
            )
            return grant

        grant = await run_in_transaction(self.db, op)
        logger.info(f"[ROSTER] Granted {grant.roles} on {property_id} to {user_id}")
        return grant

    async def deactivate_member(self, property_id: uuid.UUID, grant_id: uuid.UUID) -> PropertyUser:
        await self.authorizer.require(self.actor, Action.MANAGE_ROSTER, Target.for_property(property_id))

        async def op() -> PropertyUser:
            grant = await self.db.get(PropertyUser, grant_id, populate_existing=True)
            if grant is None or grant.property_id != property_id:
                raise NotFoundError("Roster entry not found")
            if grant.user_id == self.actor.id and self.actor.role != GlobalRole.ADMIN:
                raise ValidationError("You cannot remove your own access")
            grant.is_active = False
            grant.end_date = grant.end_date or datetime.utcnow()
            await self.audit.log(
                AuditAction.PROPERTY_USER_DEACTIVATED,
                resource_type=EntityKind.PROPERTY.value,
                resource_id=property_id,
                user_id=self.actor.id,
                old_value={"property_user_id": grant.id, "user_id": grant.user_id, "roles": grant.roles},
            )
            return grant

        return await run_in_transaction(self.db, op)
