"""Lookup helpers shared by the request and scheduled-maintenance engines."""

import uuid
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.errors import NotFoundError, ValidationError
from fixit.models.assignable import Assignee
from fixit.models.enums import AssigneeKind, EntityKind, RegistrationStatus, VendorStatus
from fixit.models.property import Property, Unit
from fixit.models.request import Request
from fixit.models.scheduled_maintenance import ScheduledMaintenance
from fixit.models.user import User
from fixit.models.vendor import Vendor
from fixit.services.notifications import NotificationService

MaintenanceItem = Union[Request, ScheduledMaintenance]

ITEM_MODELS = {
    EntityKind.REQUEST: Request,
    EntityKind.SCHEDULED_MAINTENANCE: ScheduledMaintenance,
}

ITEM_NAMES = {
    EntityKind.REQUEST: "Maintenance request",
    EntityKind.SCHEDULED_MAINTENANCE: "Scheduled maintenance",
}


def kind_of(item: MaintenanceItem) -> EntityKind:
    return EntityKind.REQUEST if isinstance(item, Request) else EntityKind.SCHEDULED_MAINTENANCE


async def get_item(db: AsyncSession, kind: EntityKind, item_id: uuid.UUID) -> MaintenanceItem:
    model = ITEM_MODELS.get(kind)
    if model is None:
        raise NotFoundError("Resource not found")
    item = await db.get(model, item_id, populate_existing=True)
    if item is None:
        raise NotFoundError(f"{ITEM_NAMES[kind]} not found")
    return item


async def assignee_user(db: AsyncSession, item: MaintenanceItem):
    assignee = item.assignee
    if assignee is None or assignee.kind != AssigneeKind.USER:
        return None
    return await db.get(User, assignee.id)


async def assignee_vendor(db: AsyncSession, item: MaintenanceItem):
    assignee = item.assignee
    if assignee is None or assignee.kind != AssigneeKind.VENDOR:
        return None
    return await db.get(Vendor, assignee.id)


async def participants(
    notifier: NotificationService,
    item: MaintenanceItem,
    management: bool = True,
    creator: bool = True,
    assignee: bool = True,
) -> list[User]:
    """Users with a stake in the item: management, requester, user assignee."""
    users: list[User] = []
    if management:
        users.extend(await notifier.management_of(item.property_id))
    if creator and item.created_by_id:
        creator_user = await notifier.db.get(User, item.created_by_id)
        if creator_user is not None:
            users.append(creator_user)
    if assignee:
        assigned = await assignee_user(notifier.db, item)
        if assigned is not None:
            users.append(assigned)
    return users


async def check_location(db: AsyncSession, property_id: uuid.UUID, unit_id: Optional[uuid.UUID]) -> Property:
    prop = await db.get(Property, property_id)
    if prop is None or not prop.is_active:
        raise NotFoundError("Property not found")
    if unit_id is not None:
        unit = await db.get(Unit, unit_id)
        if unit is None or unit.property_id != property_id:
            raise ValidationError("Unit does not belong to the property", errors=[{"field": "unit", "reason": "mismatch"}])
    return prop


async def check_assignee(db: AsyncSession, assignee: Optional[Assignee]) -> None:
    """Assignees must be active vendors or active platform users."""
    if assignee is None:
        return
    if assignee.kind == AssigneeKind.VENDOR:
        vendor = await db.get(Vendor, assignee.id)
        if vendor is None or vendor.status != VendorStatus.ACTIVE:
            raise ValidationError("Vendor not found or inactive", errors=[{"field": "assignee", "reason": "invalid vendor"}])
    else:
        user = await db.get(User, assignee.id)
        if user is None or user.is_synthetic or user.registration_status != RegistrationStatus.ACTIVE:
            raise ValidationError("User not found or inactive", errors=[{"field": "assignee", "reason": "invalid user"}])
