"""Vendors router."""

import uuid
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import delete, insert, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.database import get_db
from fixit.core.errors import AuthorizationError, NotFoundError
from fixit.core.security import get_actor, require_roles
from fixit.models.enums import AuditAction, Category, EntityKind, GlobalRole, VendorStatus
from fixit.models.user import User
from fixit.models.vendor import Vendor, vendor_properties
from fixit.routers.deps import get_audit
from fixit.schemas.base import Envelope, ok
from fixit.schemas.vendor import VendorCreate, VendorResponse, VendorUpdate
from fixit.services.audit import AuditService
from fixit.services.authorization import Authorizer

router = APIRouter(prefix="/vendors", tags=["vendors"])

require_manager = require_roles(GlobalRole.ADMIN, GlobalRole.LANDLORD, GlobalRole.PROPERTY_MANAGER)


async def _property_ids(db: AsyncSession, vendor_ids: list[uuid.UUID]) -> dict[uuid.UUID, list[uuid.UUID]]:
    if not vendor_ids:
        return {}
    result = await db.execute(
        select(vendor_properties.c.vendor_id, vendor_properties.c.property_id).where(
            vendor_properties.c.vendor_id.in_(vendor_ids)
        )
    )
    links: dict[uuid.UUID, list[uuid.UUID]] = {vid: [] for vid in vendor_ids}
    for vendor_id, property_id in result.all():
        links[vendor_id].append(property_id)
    return links


def _response(vendor: Vendor, property_ids: list[uuid.UUID]) -> VendorResponse:
    return VendorResponse.model_validate(vendor).model_copy(update={"property_ids": property_ids})


async def _check_properties(db: AsyncSession, user: User, property_ids: list[uuid.UUID]) -> None:
    """Vendors can only be linked to properties the caller manages."""
    if user.role == GlobalRole.ADMIN or not property_ids:
        return
    managed = set(await Authorizer(db).managed_property_ids(get_actor(user)))
    if not set(property_ids) <= managed:
        raise AuthorizationError("You can only link vendors to properties you manage")


async def _set_properties(db: AsyncSession, vendor_id: uuid.UUID, property_ids: list[uuid.UUID]) -> None:
    await db.execute(delete(vendor_properties).where(vendor_properties.c.vendor_id == vendor_id))
    for property_id in dict.fromkeys(property_ids):
        await db.execute(insert(vendor_properties).values(vendor_id=vendor_id, property_id=property_id))


async def _visible_vendor(db: AsyncSession, user: User, vendor_id: UUID) -> Vendor:
    vendor = await db.get(Vendor, vendor_id)
    if vendor is None:
        raise NotFoundError("Vendor not found")
    if user.role == GlobalRole.ADMIN or vendor.added_by_id == user.id:
        return vendor
    managed = set(await Authorizer(db).managed_property_ids(get_actor(user)))
    linked = set((await _property_ids(db, [vendor.id]))[vendor.id])
    if not managed & linked:
        raise NotFoundError("Vendor not found")
    return vendor


@router.post("", response_model=Envelope[VendorResponse], status_code=status.HTTP_201_CREATED)
async def create_vendor(
    data: VendorCreate,
    db: AsyncSession = Depends(get_db),
    audit: AuditService = Depends(get_audit),
    current_user: User = Depends(require_manager),
):
    """Create a new vendor."""
    await _check_properties(db, current_user, data.property_ids)
    vendor = Vendor(
        id=uuid.uuid4(),
        name=data.name,
        description=data.description,
        services=[s.value for s in data.services],
        contact_person=data.contact_person,
        email=data.email,
        phone=data.phone,
        address=data.address,
        notes=data.notes,
        added_by_id=current_user.id,
    )
    db.add(vendor)
    await db.flush()
    await _set_properties(db, vendor.id, data.property_ids)
    await audit.log(
        AuditAction.CREATE,
        resource_type=EntityKind.VENDOR.value,
        resource_id=vendor.id,
        user_id=current_user.id,
        new_value={"name": vendor.name, "services": vendor.services, "property_ids": data.property_ids},
    )
    await db.commit()
    await db.refresh(vendor)

    return ok(_response(vendor, list(dict.fromkeys(data.property_ids))), "Vendor created")


@router.get("", response_model=Envelope[list[VendorResponse]])
async def list_vendors(
    service: Optional[Category] = None,
    vendor_status: Optional[VendorStatus] = Query(None, alias="status"),
    property_id: Optional[UUID] = None,
    search: Optional[str] = Query(None, max_length=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manager),
):
    """List vendors visible to the caller."""
    query = select(Vendor)

    if current_user.role != GlobalRole.ADMIN:
        managed = await Authorizer(db).managed_property_ids(get_actor(current_user))
        linked = select(vendor_properties.c.vendor_id).where(vendor_properties.c.property_id.in_(managed))
        query = query.where(or_(Vendor.added_by_id == current_user.id, Vendor.id.in_(linked)))
    if vendor_status:
        query = query.where(Vendor.status == vendor_status)
    if property_id:
        query = query.where(
            Vendor.id.in_(select(vendor_properties.c.vendor_id).where(vendor_properties.c.property_id == property_id))
        )
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(Vendor.name.ilike(pattern), Vendor.contact_person.ilike(pattern)))

    query = query.order_by(Vendor.average_rating.desc(), Vendor.name)

    result = await db.execute(query)
    vendors = list(result.scalars().all())
    # services is a JSON list; filter in Python to stay portable across databases
    if service:
        vendors = [v for v in vendors if service.value in (v.services or [])]
    links = await _property_ids(db, [v.id for v in vendors])

    return ok([_response(v, links[v.id]) for v in vendors])


@router.get("/{vendor_id}", response_model=Envelope[VendorResponse])
async def get_vendor(
    vendor_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manager),
):
    """Get a vendor by ID."""
    vendor = await _visible_vendor(db, current_user, vendor_id)
    links = await _property_ids(db, [vendor.id])
    return ok(_response(vendor, links[vendor.id]))


@router.patch("/{vendor_id}", response_model=Envelope[VendorResponse])
async def update_vendor(
    vendor_id: UUID,
    data: VendorUpdate,
    db: AsyncSession = Depends(get_db),
    audit: AuditService = Depends(get_audit),
    current_user: User = Depends(require_manager),
):
    """Update a vendor."""
    vendor = await _visible_vendor(db, current_user, vendor_id)

    update_data = data.model_dump(exclude_unset=True, exclude={"property_ids"})
    if "services" in update_data and update_data["services"] is not None:
        update_data["services"] = [s.value for s in data.services]
    old, new = {}, {}
    for field, value in update_data.items():
        if value is not None and getattr(vendor, field) != value:
            old[field], new[field] = getattr(vendor, field), value
            setattr(vendor, field, value)
    if data.property_ids is not None:
        await _check_properties(db, current_user, data.property_ids)
        await _set_properties(db, vendor.id, data.property_ids)
        new["property_ids"] = data.property_ids

    if new:
        await audit.log(
            AuditAction.UPDATE,
            resource_type=EntityKind.VENDOR.value,
            resource_id=vendor.id,
            user_id=current_user.id,
            old_value=old,
            new_value=new,
        )
    await db.commit()
    await db.refresh(vendor)

    links = await _property_ids(db, [vendor.id])
    return ok(_response(vendor, links[vendor.id]), "Vendor updated")


@router.delete("/{vendor_id}", response_model=Envelope[VendorResponse])
async def delete_vendor(
    vendor_id: UUID,
    db: AsyncSession = Depends(get_db),
    audit: AuditService = Depends(get_audit),
    current_user: User = Depends(require_manager),
):
    """Deactivate a vendor. Existing assignments keep their history."""
    vendor = await _visible_vendor(db, current_user, vendor_id)
    vendor.status = VendorStatus.INACTIVE
    await audit.log(
        AuditAction.DELETE,
        resource_type=EntityKind.VENDOR.value,
        resource_id=vendor.id,
        user_id=current_user.id,
        old_value={"status": VendorStatus.ACTIVE},
        new_value={"status": VendorStatus.INACTIVE},
    )
    await db.commit()
    await db.refresh(vendor)

    links = await _property_ids(db, [vendor.id])
    return ok(_response(vendor, links[vendor.id]), "Vendor deactivated")
