"""In-app Notification model."""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Enum as SQLEnum, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from fixit.core.database import Base, JSONType
from fixit.models.enums import EntityKind, NotificationKind


class Notification(Base):
    """A notification addressed to one user.

    ``email_payload``/``sms_payload`` record what was queued for the
    outbound channels, if any.
    """

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    recipient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    kind: Mapped[NotificationKind] = mapped_column(SQLEnum(NotificationKind), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    related_kind: Mapped[Optional[EntityKind]] = mapped_column(SQLEnum(EntityKind), nullable=True)
    related_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    email_payload: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    sms_payload: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_notifications_recipient_read", "recipient_id", "is_read", "created_at"),
        Index("ix_notifications_related", "related_kind", "related_id"),
    )
