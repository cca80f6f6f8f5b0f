"""User model."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum as SQLEnum, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from fixit.core.database import Base, JSONType
from fixit.models.enums import GlobalRole, NotificationChannel, RegistrationStatus

DEFAULT_CHANNELS = [NotificationChannel.IN_APP.value, NotificationChannel.EMAIL.value]


class User(Base):
    """Platform identity. Password hash is absent for federated-only accounts."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    federated_id: Mapped[Optional[str]] = mapped_column(
        String(128),
        unique=True,
        nullable=True,
    )

    role: Mapped[GlobalRole] = mapped_column(
        SQLEnum(GlobalRole),
        default=GlobalRole.TENANT,
        nullable=False,
    )
    registration_status: Mapped[RegistrationStatus] = mapped_column(
        SQLEnum(RegistrationStatus),
        default=RegistrationStatus.PENDING_EMAIL_VERIFICATION,
        nullable=False,
        index=True,
    )
    notification_channels: Mapped[list[str]] = mapped_column(
        JSONType,
        default=lambda: list(DEFAULT_CHANNELS),
        nullable=False,
    )

    is_email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    # Created on demand to attribute public-link updates; cannot log in
    is_synthetic: Mapped[bool] = mapped_column(Boolean, default=False)

    # One-time tokens are stored hashed
    email_verification_token_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    email_verification_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    password_reset_token_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    password_reset_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or self.email

    @property
    def is_active(self) -> bool:
        return self.registration_status == RegistrationStatus.ACTIVE

    def wants(self, channel: NotificationChannel) -> bool:
        return channel.value in (self.notification_channels or [])
