"""Properties, Units and roster router."""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.database import get_db
from fixit.core.security import require_roles
from fixit.models.enums import GlobalRole
from fixit.routers.deps import current_actor, get_audit
from fixit.schemas.base import Envelope, ok
from fixit.schemas.property import (
    PropertyCreate,
    PropertyResponse,
    PropertyUpdate,
    PropertyUserCreate,
    PropertyUserResponse,
    UnitCreate,
    UnitResponse,
)
from fixit.services.audit import AuditService
from fixit.services.authorization import Actor
from fixit.services.properties import PropertyService

router = APIRouter(prefix="/properties", tags=["properties"])

MANAGERS = (GlobalRole.ADMIN, GlobalRole.LANDLORD, GlobalRole.PROPERTY_MANAGER)


def get_property_service(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(current_actor),
    audit: AuditService = Depends(get_audit),
) -> PropertyService:
    return PropertyService(db, actor, audit)


@router.post(
    "",
    response_model=Envelope[PropertyResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(*MANAGERS))],
)
async def create_property(data: PropertyCreate, properties: PropertyService = Depends(get_property_service)):
    """Create a property. The creator is added to its roster."""
    prop = await properties.create(data.model_dump())
    return ok(PropertyResponse.model_validate(prop), "Property created")


@router.get("", response_model=Envelope[list[PropertyResponse]])
async def list_properties(properties: PropertyService = Depends(get_property_service)):
    """List properties the caller has access to."""
    props = await properties.list_properties()
    counts = await properties.unit_counts([p.id for p in props])
    return ok([
        PropertyResponse.model_validate(p).model_copy(update={"unit_count": counts.get(p.id, 0)})
        for p in props
    ])


@router.get("/{property_id}", response_model=Envelope[PropertyResponse])
async def get_property(property_id: UUID, properties: PropertyService = Depends(get_property_service)):
    prop = await properties.get(property_id)
    counts = await properties.unit_counts([prop.id])
    return ok(PropertyResponse.model_validate(prop).model_copy(update={"unit_count": counts.get(prop.id, 0)}))


@router.patch("/{property_id}", response_model=Envelope[PropertyResponse])
async def update_property(
    property_id: UUID,
    data: PropertyUpdate,
    properties: PropertyService = Depends(get_property_service),
):
    prop = await properties.update(property_id, data.model_dump(exclude_unset=True))
    return ok(PropertyResponse.model_validate(prop), "Property updated")


# Units

@router.get("/{property_id}/units", response_model=Envelope[list[UnitResponse]])
async def list_units(property_id: UUID, properties: PropertyService = Depends(get_property_service)):
    units = await properties.list_units(property_id)
    return ok([UnitResponse.model_validate(u) for u in units])


@router.post(
    "/{property_id}/units",
    response_model=Envelope[UnitResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_unit(
    property_id: UUID,
    data: UnitCreate,
    properties: PropertyService = Depends(get_property_service),
):
    unit = await properties.add_unit(property_id, data.model_dump())
    return ok(UnitResponse.model_validate(unit), "Unit created")


@router.get("/{property_id}/units/{unit_id}", response_model=Envelope[UnitResponse])
async def get_unit(property_id: UUID, unit_id: UUID, properties: PropertyService = Depends(get_property_service)):
    return ok(UnitResponse.model_validate(await properties.get_unit(property_id, unit_id)))


# Roster

@router.get("/{property_id}/users", response_model=Envelope[list[PropertyUserResponse]])
async def list_property_users(
    property_id: UUID,
    include_inactive: bool = False,
    properties: PropertyService = Depends(get_property_service),
):
    grants = await properties.roster(property_id, include_inactive)
    return ok([PropertyUserResponse.model_validate(g) for g in grants])


@router.post(
    "/{property_id}/users",
    response_model=Envelope[PropertyUserResponse],
    status_code=status.HTTP_201_CREATED,
)
async def add_property_user(
    property_id: UUID,
    data: PropertyUserCreate,
    properties: PropertyService = Depends(get_property_service),
):
    grant = await properties.add_member(property_id, data.user_id, data.roles, data.unit_id, data.end_date)
    return ok(PropertyUserResponse.model_validate(grant), "Access granted")


@router.delete("/{property_id}/users/{property_user_id}", response_model=Envelope[PropertyUserResponse])
async def deactivate_property_user(
    property_id: UUID,
    property_user_id: UUID,
    properties: PropertyService = Depends(get_property_service),
):
    grant = await properties.deactivate_member(property_id, property_user_id)
    return ok(PropertyUserResponse.model_validate(grant), "Access removed")
