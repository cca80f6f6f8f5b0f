"""ScheduledMaintenance model."""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from fixit.core.database import Base, JSONType
from fixit.models.assignable import MaintenanceItemMixin
from fixit.models.enums import ScheduleStatus


class ScheduledMaintenance(MaintenanceItemMixin, Base):
    """A periodic maintenance task that materialises Requests when due.

    ``frequency`` is a tagged record, see ``fixit.services.recurrence.Frequency``.
    ``next_due_date`` is the only field the scheduler consumes.
    """

    __tablename__ = "scheduled_maintenance"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    status: Mapped[ScheduleStatus] = mapped_column(
        SQLEnum(ScheduleStatus),
        default=ScheduleStatus.SCHEDULED,
        nullable=False,
    )

    scheduled_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    recurring: Mapped[bool] = mapped_column(Boolean, default=False)
    frequency: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    next_due_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Due date frozen by pause; resume restarts from max(frozen, now)
    paused_due_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_executed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_generated_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("requests.id", ondelete="SET NULL", use_alter=True),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_scheduled_maintenance_due_status", "next_due_date", "status"),
        Index("ix_scheduled_maintenance_property_status", "property_id", "status"),
        CheckConstraint(
            "(assigned_to_kind IS NULL) = (assigned_to_id IS NULL)",
            name="ck_scheduled_maintenance_assignee_coherent",
        ),
    )
