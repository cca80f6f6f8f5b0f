"""Property, Unit and PropertyUser models."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from fixit.core.database import Base, JSONType
from fixit.models.enums import PropertyRole, PropertyType, UnitStatus


class Property(Base):
    """A building or complex."""

    __tablename__ = "properties"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    property_type: Mapped[PropertyType] = mapped_column(
        SQLEnum(PropertyType),
        default=PropertyType.RESIDENTIAL,
        nullable=False,
    )

    # Address
    street: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def address_line(self) -> str:
        return ", ".join(p for p in (self.street, self.city, self.state, self.country) if p)


class Unit(Base):
    """A unit within a property."""

    __tablename__ = "units"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    property_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("properties.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    unit_name: Mapped[str] = mapped_column(String(100), nullable=False)
    floor: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    status: Mapped[UnitStatus] = mapped_column(
        SQLEnum(UnitStatus),
        default=UnitStatus.VACANT,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class PropertyUser(Base):
    """Access grant of a user on a property (optionally a unit).

    Source of truth for authorization. ``roles`` is an unordered set; a user
    may hold several rows for the same property.
    """

    __tablename__ = "property_users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    property_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("properties.id", ondelete="CASCADE"),
        nullable=False,
    )
    unit_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("units.id", ondelete="CASCADE"),
        nullable=True,
    )
    roles: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    # Denormalised so the tenant/unit invariant can be enforced by the database
    has_tenant_role: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    start_date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    invited_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("ix_property_users_user_property", "user_id", "property_id", "is_active"),
        CheckConstraint(
            "has_tenant_role = false OR unit_id IS NOT NULL",
            name="ck_property_users_tenant_requires_unit",
        ),
    )

    @property
    def role_set(self) -> frozenset[PropertyRole]:
        return frozenset(PropertyRole(r) for r in (self.roles or []))

    def set_roles(self, roles: "set[PropertyRole] | list[PropertyRole]") -> None:
        ordered = sorted({PropertyRole(r) for r in roles}, key=lambda r: r.value)
        self.roles = [r.value for r in ordered]
        self.has_tenant_role = PropertyRole.TENANT in ordered
