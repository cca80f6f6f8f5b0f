"""Vendor schemas."""

from typing import Optional
from uuid import UUID

from pydantic import AliasChoices, EmailStr, Field

from fixit.models.enums import Category, VendorStatus
from fixit.schemas.base import BaseSchema, IDMixin, TimestampMixin


class VendorCreate(BaseSchema):
    """Create a new vendor."""

    name: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = None
    services: list[Category] = []
    contact_person: Optional[str] = Field(
        None, max_length=255, validation_alias=AliasChoices("contact_person", "contactPerson")
    )
    email: Optional[EmailStr] = None
    phone: str = Field(..., min_length=7, max_length=50)
    address: Optional[str] = None
    notes: Optional[str] = None
    property_ids: list[UUID] = Field(
        [], validation_alias=AliasChoices("property_ids", "propertyIds", "associatedProperties")
    )


class VendorUpdate(BaseSchema):
    """Update vendor."""

    name: Optional[str] = Field(None, min_length=2, max_length=255)
    description: Optional[str] = None
    services: Optional[list[Category]] = None
    contact_person: Optional[str] = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, min_length=7, max_length=50)
    address: Optional[str] = None
    status: Optional[VendorStatus] = None
    notes: Optional[str] = None
    property_ids: Optional[list[UUID]] = None


class VendorResponse(BaseSchema, IDMixin, TimestampMixin):
    """Vendor response."""

    name: str
    description: Optional[str] = None
    services: list[str] = []
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: str
    address: Optional[str] = None
    status: VendorStatus
    average_rating: float = 0
    rating_count: int = 0
    total_jobs_completed: int = 0
    notes: Optional[str] = None
    property_ids: list[UUID] = []
