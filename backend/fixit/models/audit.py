"""AuditLog model."""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Enum as SQLEnum, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from fixit.core.database import Base, JSONType
from fixit.models.enums import AuditAction, AuditStatus


class AuditLog(Base):
    """Immutable audit log. Rows are inserted, never updated."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    action: Mapped[AuditAction] = mapped_column(
        SQLEnum(AuditAction),
        nullable=False,
        index=True,
    )

    # Resource being acted upon
    resource_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    resource_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    old_value: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    new_value: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    # Request context
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    external_user_identifier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    status: Mapped[AuditStatus] = mapped_column(
        SQLEnum(AuditStatus),
        default=AuditStatus.SUCCESS,
        nullable=False,
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_audit_logs_resource", "resource_type", "resource_id"),
    )
