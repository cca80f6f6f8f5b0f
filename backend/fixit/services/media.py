"""Media attached to requests and scheduled maintenance."""

import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.errors import ExternalDependencyError
from fixit.models.enums import AuditAction, EntityKind
from fixit.models.media import Media
from fixit.services.audit import AuditService
from fixit.services.storage import MediaRegistry

logger = logging.getLogger(__name__)

FOLDERS = {
    EntityKind.REQUEST: "requests",
    EntityKind.SCHEDULED_MAINTENANCE: "scheduled-maintenance",
}


@dataclass(frozen=True)
class UploadPayload:
    data: bytes
    mime_type: str
    filename: str


class MediaService:
    """Registers blobs against owning entities.

    Blob uploads happen before the database transaction commits; callers
    that roll back must pass the returned public ids to ``release``.
    """

    def __init__(self, db: AsyncSession, registry: MediaRegistry, audit: AuditService):
        self.db = db
        self.registry = registry
        self.audit = audit

    async def attach(
        self,
        owner_kind: EntityKind,
        owner_id: uuid.UUID,
        upload: UploadPayload,
        uploaded_by_id: Optional[uuid.UUID],
        tags: Optional[list[str]] = None,
        is_public: bool = False,
    ) -> Media:
        folder = f"{FOLDERS.get(owner_kind, owner_kind.value)}/{owner_id}"
        handle = await self.registry.upload(
            upload.data,
            upload.mime_type,
            upload.filename,
            folder,
            meta={"owner_kind": owner_kind.value, "owner_id": owner_id},
        )
        media = Media(
            id=uuid.uuid4(),
            filename=upload.filename,
            mime_type=upload.mime_type,
            size=handle.size,
            url=handle.url,
            thumbnail_url=handle.thumbnail_url,
            public_id=handle.public_id,
            uploaded_by_id=uploaded_by_id,
            owner_kind=owner_kind,
            owner_id=owner_id,
            tags=list(tags or []),
            is_public=is_public,
        )
        self.db.add(media)
        await self.audit.log(
            AuditAction.MEDIA_UPLOADED,
            resource_type=owner_kind.value,
            resource_id=owner_id,
            user_id=uploaded_by_id,
            new_value={"media_id": media.id, "filename": media.filename, "size": media.size},
        )
        return media

    async def for_owner(self, owner_kind: EntityKind, owner_id: uuid.UUID) -> list[Media]:
        result = await self.db.execute(
            select(Media)
            .where(Media.owner_kind == owner_kind, Media.owner_id == owner_id)
            .order_by(Media.created_at)
        )
        return list(result.scalars().all())

    async def clone(
        self,
        source_kind: EntityKind,
        source_id: uuid.UUID,
        target_kind: EntityKind,
        target_id: uuid.UUID,
    ) -> list[Media]:
        """Point ``target`` at the same blobs as ``source``."""
        copies = []
        for item in await self.for_owner(source_kind, source_id):
            copy = Media(
                id=uuid.uuid4(),
                filename=item.filename,
                mime_type=item.mime_type,
                size=item.size,
                url=item.url,
                thumbnail_url=item.thumbnail_url,
                public_id=item.public_id,
                uploaded_by_id=item.uploaded_by_id,
                owner_kind=target_kind,
                owner_id=target_id,
                tags=list(item.tags or []),
                is_public=item.is_public,
            )
            self.db.add(copy)
            copies.append(copy)
        return copies

    async def remove(self, media: Media, user_id: Optional[uuid.UUID]) -> str:
        """Delete one row; returns its public id for ``release``."""
        await self.db.delete(media)
        await self.audit.log(
            AuditAction.MEDIA_DELETED,
            resource_type=media.owner_kind.value,
            resource_id=media.owner_id,
            user_id=user_id,
            old_value={"media_id": media.id, "filename": media.filename},
        )
        return media.public_id

    async def detach_all(self, owner_kind: EntityKind, owner_id: uuid.UUID) -> list[str]:
        """Delete every media row of an owner; returns the public ids."""
        items = await self.for_owner(owner_kind, owner_id)
        public_ids = [m.public_id for m in items]
        await self.db.execute(
            delete(Media).where(Media.owner_kind == owner_kind, Media.owner_id == owner_id)
        )
        return public_ids

    async def release(self, public_ids: Iterable[str]) -> None:
        """Best-effort blob deletion after the owning rows are gone.

        Blobs still referenced by another media row are kept. Failures are
        logged and recorded as audit failures; they never propagate.
        """
        for public_id in dict.fromkeys(public_ids):
            result = await self.db.execute(select(func.count(Media.id)).where(Media.public_id == public_id))
            if result.scalar():
                continue
            try:
                await self.registry.delete(public_id)
            except ExternalDependencyError as e:
                logger.warning(f"[STORAGE] Could not delete blob {public_id}: {e.message}")
                await self.audit.log_failure(
                    AuditAction.MEDIA_DELETED,
                    error_message=e.message,
                    details={"public_id": public_id},
                )
