"""Comments, media and history of a maintenance item, as seen by a signed-in user."""

import logging
import uuid
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.database import run_in_transaction
from fixit.core.errors import AuthorizationError, NotFoundError
from fixit.models.activity import Comment
from fixit.models.enums import EntityKind
from fixit.models.media import Media
from fixit.models.user import User
from fixit.services.activity import StatusHistory, status_label
from fixit.services.audit import AuditService
from fixit.services.authorization import Action, Actor, Authorizer, Target
from fixit.services.comments import CommentService
from fixit.services.items import MaintenanceItem, get_item, kind_of
from fixit.services.media import MediaService, UploadPayload

logger = logging.getLogger(__name__)


class ItemActivityService:
    def __init__(
        self,
        db: AsyncSession,
        user: User,
        audit: AuditService,
        media: Optional[MediaService] = None,
    ):
        self.db = db
        self.user = user
        self.actor = Actor(id=user.id, role=user.role)
        self.audit = audit
        self.media = media
        self.authorizer = Authorizer(db)
        self.history = StatusHistory(db)
        self.comments = CommentService(db, audit)

    async def load(self, kind: EntityKind, item_id: uuid.UUID, action: Action = Action.READ) -> MaintenanceItem:
        item = await get_item(self.db, kind, item_id)
        await self.authorizer.require(self.actor, action, Target.for_item(item, kind))
        return item

    async def feeds(self, item: MaintenanceItem) -> dict[str, Any]:
        """History, comments and media. Internal notes only for management."""
        kind = kind_of(item)
        internal = await self.authorizer.is_management(self.actor, item.property_id)
        return {
            "status_history": [
                {
                    "sequence": h.sequence,
                    "status": h.status,
                    "label": status_label(h.status),
                    "changed_at": h.changed_at,
                    "changed_by_id": h.changed_by_id,
                    "notes": h.notes,
                }
                for h in await self.history.entries(kind, item.id)
            ],
            "comments": await self.comments.list_for(kind, item.id, include_internal=internal),
            "media": await self.media.for_owner(kind, item.id) if self.media else [],
        }

    # Comments

    async def list_comments(self, kind: EntityKind, item_id: uuid.UUID) -> list[Comment]:
        item = await self.load(kind, item_id)
        internal = await self.authorizer.is_management(self.actor, item.property_id)
        return await self.comments.list_for(kind, item.id, include_internal=internal)

    async def add_comment(self, kind: EntityKind, item_id: uuid.UUID, message: str, is_internal_note: bool = False) -> Comment:
        async def op() -> Comment:
            action = Action.COMMENT_INTERNAL if is_internal_note else Action.COMMENT
            item = await self.load(kind, item_id, action)
            return await self.comments.add(item, message, self.user, is_internal_note=is_internal_note)

        comment = await run_in_transaction(self.db, op)
        logger.info(f"[COMMENT] {self.user.id} commented on {kind.value} {item_id} (internal={comment.is_internal_note})")
        return comment

    async def _own_comment(self, comment_id: uuid.UUID) -> tuple[Comment, MaintenanceItem]:
        comment = await self.comments.get(comment_id)
        item = await self.load(comment.context_kind, comment.context_id)
        return comment, item

    async def update_comment(self, comment_id: uuid.UUID, message: str) -> Comment:
        async def op() -> Comment:
            comment, _ = await self._own_comment(comment_id)
            return await self.comments.update(comment, message, self.user)

        return await run_in_transaction(self.db, op)

    async def delete_comment(self, comment_id: uuid.UUID) -> None:
        """Authors delete their own comments; management deletes any on its properties."""

        async def op() -> None:
            comment, item = await self._own_comment(comment_id)
            if comment.sender_id != self.user.id and not await self.authorizer.is_management(self.actor, item.property_id):
                raise AuthorizationError("You can only delete your own comments")
            await self.comments.delete(comment, self.user)

        await run_in_transaction(self.db, op)

    # Media

    async def upload(self, kind: EntityKind, item_id: uuid.UUID, uploads: list[UploadPayload]) -> list[Media]:
        """Store blobs, then register them. Blobs of a failed registration are released."""
        item = await self.load(kind, item_id, Action.UPLOAD_MEDIA)
        public_ids: list[str] = []
        created: list[Media] = []
        try:
            for upload in uploads:
                media = await self.media.attach(kind, item.id, upload, self.user.id)
                public_ids.append(media.public_id)
                created.append(media)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            await self.media.release(public_ids)
            await self.db.commit()
            raise
        logger.info(f"[MEDIA] {len(created)} file(s) attached to {kind.value} {item.id}")
        return created

    async def remove_media(self, kind: EntityKind, item_id: uuid.UUID, media_id: uuid.UUID) -> None:
        item = await self.load(kind, item_id, Action.DELETE_MEDIA)
        media = await self.db.get(Media, media_id)
        if media is None or media.owner_kind != kind or media.owner_id != item.id:
            raise NotFoundError("Media not found")
        public_id = await self.media.remove(media, self.user.id)
        await self.db.commit()
        await self.media.release([public_id])
        await self.db.commit()
