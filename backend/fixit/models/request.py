"""Maintenance Request model."""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from fixit.core.database import Base, JSONType
from fixit.models.assignable import MaintenanceItemMixin
from fixit.models.enums import Priority, RequestStatus


class Request(MaintenanceItemMixin, Base):
    """A one-shot maintenance request."""

    __tablename__ = "requests"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    priority: Mapped[Priority] = mapped_column(
        SQLEnum(Priority),
        default=Priority.MEDIUM,
        nullable=False,
    )
    status: Mapped[RequestStatus] = mapped_column(
        SQLEnum(RequestStatus),
        default=RequestStatus.NEW,
        nullable=False,
    )

    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # {rating: 1..5, comment, submitted_by, submitted_at}
    feedback: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    # Materialisation provenance
    generated_from_schedule_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("scheduled_maintenance.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    generated_for_due_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_requests_property_status", "property_id", "status"),
        Index("ix_requests_assigned_status", "assigned_to_id", "status"),
        Index("ix_requests_created_by_status", "created_by_id", "status"),
        UniqueConstraint(
            "generated_from_schedule_id",
            "generated_for_due_date",
            name="uq_requests_schedule_occurrence",
        ),
        CheckConstraint(
            "(assigned_to_kind IS NULL) = (assigned_to_id IS NULL)",
            name="ck_requests_assignee_coherent",
        ),
    )
