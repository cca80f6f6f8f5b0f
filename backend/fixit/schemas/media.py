"""Media schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fixit.models.enums import EntityKind
from fixit.schemas.base import BaseSchema, IDMixin


class MediaResponse(BaseSchema, IDMixin):
    """Registered blob. ``public_id`` stays internal to the registry."""

    filename: str
    mime_type: str
    size: int
    url: str
    thumbnail_url: Optional[str] = None
    owner_kind: EntityKind
    owner_id: UUID
    uploaded_by_id: Optional[UUID] = None
    tags: list[str] = []
    created_at: datetime
