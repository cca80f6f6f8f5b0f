"""Vendor model."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from fixit.core.database import Base, JSONType
from fixit.models.enums import VendorStatus

vendor_properties = Table(
    "vendor_properties",
    Base.metadata,
    Column("vendor_id", Uuid, ForeignKey("vendors.id", ondelete="CASCADE"), primary_key=True),
    Column("property_id", Uuid, ForeignKey("properties.id", ondelete="CASCADE"), primary_key=True),
)


class Vendor(Base):
    """An external service provider.

    Vendors can be assigned to requests and schedules without holding a
    user account.
    """

    __tablename__ = "vendors"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Business info
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    services: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    # Contact info
    contact_person: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[str] = mapped_column(String(50), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[VendorStatus] = mapped_column(
        SQLEnum(VendorStatus),
        default=VendorStatus.ACTIVE,
        nullable=False,
    )

    # Ratings (computed from request feedback)
    average_rating: Mapped[float] = mapped_column(Float, default=0)
    rating_count: Mapped[int] = mapped_column(Integer, default=0)
    total_jobs_completed: Mapped[int] = mapped_column(Integer, default=0)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    added_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def record_rating(self, rating: int) -> None:
        total = (self.average_rating or 0) * (self.rating_count or 0) + rating
        self.rating_count = (self.rating_count or 0) + 1
        self.average_rating = round(total / self.rating_count, 2)
