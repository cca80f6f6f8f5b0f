"""Property, Unit and roster schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import AliasChoices, Field, field_validator, model_validator

from fixit.models.enums import PropertyRole, PropertyType, UnitStatus
from fixit.schemas.base import BaseSchema, IDMixin, TimestampMixin


class PropertyCreate(BaseSchema):
    """Create a new property."""

    name: str = Field(..., min_length=2, max_length=255)
    property_type: PropertyType = Field(
        PropertyType.RESIDENTIAL, validation_alias=AliasChoices("property_type", "propertyType", "type")
    )
    street: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    zip_code: Optional[str] = Field(None, max_length=20, validation_alias=AliasChoices("zip_code", "zipCode"))
    country: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None


class PropertyUpdate(BaseSchema):
    """Update property."""

    name: Optional[str] = Field(None, min_length=2, max_length=255)
    property_type: Optional[PropertyType] = None
    street: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    zip_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None


class PropertyResponse(BaseSchema, IDMixin, TimestampMixin):
    """Property response."""

    name: str
    property_type: PropertyType
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True
    unit_count: int = 0


class UnitCreate(BaseSchema):
    """Create a new unit."""

    unit_name: str = Field(
        ..., min_length=1, max_length=100, validation_alias=AliasChoices("unit_name", "unitName", "name")
    )
    floor: Optional[str] = Field(None, max_length=20)
    status: UnitStatus = UnitStatus.VACANT


class UnitResponse(BaseSchema, IDMixin, TimestampMixin):
    """Unit response."""

    property_id: UUID
    unit_name: str
    floor: Optional[str] = None
    status: UnitStatus


class PropertyUserCreate(BaseSchema):
    """Grant a user roles on a property (optionally a unit)."""

    user_id: UUID = Field(..., validation_alias=AliasChoices("user_id", "userId", "user"))
    unit_id: Optional[UUID] = Field(None, validation_alias=AliasChoices("unit_id", "unitId", "unit"))
    roles: list[PropertyRole] = Field(..., min_length=1)
    end_date: Optional[datetime] = None

    @field_validator("roles")
    @classmethod
    def dedupe_roles(cls, v: list[PropertyRole]) -> list[PropertyRole]:
        return sorted(set(v), key=lambda r: r.value)

    @model_validator(mode="after")
    def tenant_requires_unit(self):
        """A tenant grant must name the unit."""
        if PropertyRole.TENANT in self.roles and self.unit_id is None:
            raise ValueError("unit_id is required when granting the tenant role")
        return self


class PropertyUserResponse(BaseSchema, IDMixin, TimestampMixin):
    user_id: UUID
    property_id: UUID
    unit_id: Optional[UUID] = None
    roles: list[PropertyRole]
    is_active: bool
    start_date: datetime
    end_date: Optional[datetime] = None
    invited_by_id: Optional[UUID] = None
