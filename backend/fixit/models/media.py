"""Media model."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from fixit.core.database import Base, JSONType
from fixit.models.enums import EntityKind


class Media(Base):
    """A blob registered with the media registry.

    ``url`` is opaque; only the registry knows how to revoke it via ``public_id``.
    """

    __tablename__ = "media"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)

    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    # Shared by clones of the same blob (schedule -> generated request)
    public_id: Mapped[str] = mapped_column(String(500), nullable=False, index=True)

    uploaded_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    owner_kind: Mapped[EntityKind] = mapped_column(SQLEnum(EntityKind), nullable=False)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    tags: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_media_owner", "owner_kind", "owner_id", "created_at"),
    )
