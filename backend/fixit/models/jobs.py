"""Jobs outbox and scheduler lease models."""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Enum as SQLEnum, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from fixit.core.database import Base, JSONType
from fixit.models.enums import JobStatus


class JobsOutbox(Base):
    """Async job queue with idempotency via unique_scope.

    Outbound email, SMS and reminder work goes through this table.
    unique_scope de-duplicates (e.g. "reminder:{request_id}:{sweep_day}").
    """

    __tablename__ = "jobs_outbox"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Job type ("send_email", "send_sms", "overdue_reminder")
    type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)

    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus),
        default=JobStatus.PENDING,
        nullable=False,
        index=True,
    )

    unique_scope: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)

    # Retry tracking
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    run_after: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_jobs_outbox_pending", "status", "run_after"),
    )


class SchedulerLease(Base):
    """Row lock electing the single scheduler leader of a deployment."""

    __tablename__ = "scheduler_leases"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    holder: Mapped[str] = mapped_column(String(200), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
