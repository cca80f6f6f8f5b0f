"""Property invitation model."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum as SQLEnum, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from fixit.core.database import Base, JSONType
from fixit.models.enums import InviteStatus, PropertyRole


class Invite(Base):
    """Single-use invitation to join a property (optionally a unit).

    Only the SHA-256 of the token is stored; the raw token travels in the
    emailed link. Accepting creates or reactivates the PropertyUser grant.
    """

    __tablename__ = "invites"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    roles: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
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
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    status: Mapped[InviteStatus] = mapped_column(
        SQLEnum(InviteStatus),
        default=InviteStatus.PENDING,
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    invited_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    accepted_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    revoked_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("ix_invites_email_status", "email", "status"),
        Index("ix_invites_property_status", "property_id", "status"),
    )

    @property
    def role_set(self) -> frozenset[PropertyRole]:
        return frozenset(PropertyRole(r) for r in (self.roles or []))

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        return self.status == InviteStatus.PENDING and self.expires_at > (now or datetime.utcnow())
