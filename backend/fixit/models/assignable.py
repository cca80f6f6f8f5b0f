"""Columns and behaviour shared by requests and scheduled maintenance."""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum as SQLEnum, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from fixit.models.enums import AssigneeKind, Category


@dataclass(frozen=True)
class Assignee:
    """Tagged assignee: a platform user or a vendor."""

    kind: AssigneeKind
    id: uuid.UUID

    @classmethod
    def user(cls, user_id: uuid.UUID) -> "Assignee":
        return cls(AssigneeKind.USER, user_id)

    @classmethod
    def vendor(cls, vendor_id: uuid.UUID) -> "Assignee":
        return cls(AssigneeKind.VENDOR, vendor_id)


class MaintenanceItemMixin:
    """Header, assignment and public-link columns of a maintenance item."""

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Category] = mapped_column(SQLEnum(Category), nullable=False)

    @declared_attr
    def property_id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            Uuid,
            ForeignKey("properties.id", ondelete="CASCADE"),
            nullable=False,
        )

    @declared_attr
    def unit_id(cls) -> Mapped[Optional[uuid.UUID]]:
        return mapped_column(
            Uuid,
            ForeignKey("units.id", ondelete="SET NULL"),
            nullable=True,
        )

    @declared_attr
    def created_by_id(cls) -> Mapped[Optional[uuid.UUID]]:
        return mapped_column(
            Uuid,
            ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        )

    # Polymorphic assignment: both set or both null
    assigned_to_kind: Mapped[Optional[AssigneeKind]] = mapped_column(SQLEnum(AssigneeKind), nullable=True)
    assigned_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    @declared_attr
    def assigned_by_id(cls) -> Mapped[Optional[uuid.UUID]]:
        return mapped_column(
            Uuid,
            ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        )

    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Public link capability. Only the SHA-256 of the token is stored.
    public_token_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    public_link_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    public_link_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    @property
    def assignee(self) -> Optional[Assignee]:
        if self.assigned_to_kind is None or self.assigned_to_id is None:
            return None
        return Assignee(self.assigned_to_kind, self.assigned_to_id)

    @assignee.setter
    def assignee(self, value: Optional[Assignee]) -> None:
        if value is None:
            self.assigned_to_kind = None
            self.assigned_to_id = None
        else:
            self.assigned_to_kind = value.kind
            self.assigned_to_id = value.id

    def public_link_active(self, now: datetime) -> bool:
        return bool(
            self.public_token_hash
            and self.public_link_enabled
            and self.public_link_expires_at is not None
            and self.public_link_expires_at > now
        )
