"""Notification schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fixit.models.enums import EntityKind, NotificationKind
from fixit.schemas.base import BaseSchema, IDMixin


class NotificationResponse(BaseSchema, IDMixin):
    kind: NotificationKind
    message: str
    link: Optional[str] = None
    related_kind: Optional[EntityKind] = None
    related_id: Optional[UUID] = None
    sender_id: Optional[UUID] = None
    is_read: bool = False
    read_at: Optional[datetime] = None
    created_at: datetime
