"""Comments, internal notes and @mentions on maintenance items."""

import logging
import re
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.errors import AuthorizationError, NotFoundError, ValidationError
from fixit.models.activity import Comment, CommentMention
from fixit.models.enums import (
    AuditAction,
    EntityKind,
    GlobalRole,
    MANAGEMENT_ROLES,
    NotificationKind,
    SILENT_REQUEST_STATUSES,
)
from fixit.models.property import PropertyUser
from fixit.models.user import User
from fixit.services.audit import AuditService
from fixit.services.items import ITEM_NAMES, MaintenanceItem, kind_of, participants
from fixit.services.notifications import NotificationService, Related

logger = logging.getLogger(__name__)

MENTION_RE = re.compile(r"(?<![\w.])@([\w.+-]+(?:@[\w-]+(?:\.[\w-]+)+)?)")
MAX_COMMENT_LENGTH = 5000


def mention_tokens(message: str) -> set[str]:
    return {m.group(1).lower().rstrip(".") for m in MENTION_RE.finditer(message or "")}


def mention_keys(user: User) -> set[str]:
    """Handles by which a user can be @-mentioned."""
    keys = {user.email.lower(), user.email.split("@", 1)[0].lower()}
    if user.first_name:
        keys.add(user.first_name.lower())
        if user.last_name:
            keys.add(f"{user.first_name}{user.last_name}".lower())
            keys.add(f"{user.first_name}.{user.last_name}".lower())
    return keys


class CommentService:
    def __init__(self, db: AsyncSession, audit: AuditService, notifier: Optional[NotificationService] = None):
        self.db = db
        self.audit = audit
        self.notifier = notifier or NotificationService(db, audit)

    async def list_for(
        self,
        kind: EntityKind,
        entity_id: uuid.UUID,
        include_internal: bool,
    ) -> list[Comment]:
        query = select(Comment).where(Comment.context_kind == kind, Comment.context_id == entity_id)
        if not include_internal:
            query = query.where(Comment.is_internal_note == False)
        result = await self.db.execute(query.order_by(Comment.created_at))
        return list(result.scalars().all())

    async def get(self, comment_id: uuid.UUID) -> Comment:
        comment = await self.db.get(Comment, comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")
        return comment

    async def _property_members(self, property_id: uuid.UUID, management_only: bool) -> list[User]:
        result = await self.db.execute(
            select(PropertyUser, User)
            .join(User, User.id == PropertyUser.user_id)
            .where(PropertyUser.property_id == property_id, PropertyUser.is_active == True)
        )
        members: dict[uuid.UUID, User] = {}
        for row, user in result.all():
            if management_only and not row.role_set & MANAGEMENT_ROLES:
                continue
            members[user.id] = user
        return list(members.values())

    async def _record_mentions(self, comment: Comment, item: MaintenanceItem, sender_id: Optional[uuid.UUID]) -> list[User]:
        tokens = mention_tokens(comment.message)
        if not tokens:
            return []
        members = await self._property_members(item.property_id, management_only=comment.is_internal_note)
        mentioned = [u for u in members if u.id != sender_id and mention_keys(u) & tokens]
        for user in mentioned:
            self.db.add(
                CommentMention(
                    id=uuid.uuid4(),
                    comment_id=comment.id,
                    user_id=user.id,
                    context_kind=comment.context_kind,
                    context_id=comment.context_id,
                )
            )
        return mentioned

    async def add(
        self,
        item: MaintenanceItem,
        message: str,
        sender: Optional[User],
        is_internal_note: bool = False,
        external_name: Optional[str] = None,
        external_phone: Optional[str] = None,
    ) -> Comment:
        """Append a comment. The caller has already authorised the sender."""
        message = (message or "").strip()
        if not message:
            raise ValidationError("Comment message is required", errors=[{"field": "message", "reason": "required"}])
        if len(message) > MAX_COMMENT_LENGTH:
            raise ValidationError(f"Comment cannot exceed {MAX_COMMENT_LENGTH} characters")

        kind = kind_of(item)
        is_external = external_phone is not None
        comment = Comment(
            id=uuid.uuid4(),
            context_kind=kind,
            context_id=item.id,
            sender_id=sender.id if sender else None,
            message=message,
            is_internal_note=is_internal_note and not is_external,
            is_external=is_external,
            external_name=external_name,
            external_phone=external_phone,
        )
        self.db.add(comment)
        await self.db.flush()

        sender_id = sender.id if sender else None
        await self.audit.log(
            AuditAction.PUBLIC_UPDATE if is_external else AuditAction.COMMENT_ADDED,
            resource_type=kind.value,
            resource_id=item.id,
            user_id=sender_id,
            new_value={"comment_id": comment.id, "is_internal_note": comment.is_internal_note},
            details={"external_name": external_name} if is_external else None,
            external_user_identifier=external_phone,
        )

        mentioned = await self._record_mentions(comment, item, sender_id)
        # canceled and archived requests no longer notify anyone
        if kind == EntityKind.REQUEST and item.status in SILENT_REQUEST_STATUSES:
            return comment

        related = Related(kind, item.id)
        author = external_name or (sender.full_name if sender else "Someone")
        await self.notifier.notify(
            mentioned,
            NotificationKind.MENTION,
            f"{author} mentioned you on {ITEM_NAMES[kind].lower()} \"{item.title}\"",
            related=related,
            sender_id=sender_id,
        )

        if comment.is_internal_note:
            recipients = await participants(self.notifier, item, creator=False, assignee=False)
        else:
            recipients = await participants(self.notifier, item)
        mentioned_ids = {u.id for u in mentioned}
        await self.notifier.notify(
            [u for u in recipients if u.id not in mentioned_ids],
            NotificationKind.NEW_COMMENT,
            f"{author} commented on {ITEM_NAMES[kind].lower()} \"{item.title}\"",
            related=related,
            sender_id=sender_id,
        )
        return comment

    async def update(self, comment: Comment, message: str, actor: User) -> Comment:
        if comment.sender_id != actor.id and actor.role != GlobalRole.ADMIN:
            raise AuthorizationError("You can only edit your own comments")
        message = (message or "").strip()
        if not message:
            raise ValidationError("Comment message is required")
        old = comment.message
        comment.message = message
        await self.audit.log(
            AuditAction.COMMENT_UPDATED,
            resource_type=comment.context_kind.value,
            resource_id=comment.context_id,
            user_id=actor.id,
            old_value={"comment_id": comment.id, "message": old},
            new_value={"comment_id": comment.id, "message": message},
        )
        return comment

    async def delete(self, comment: Comment, actor: User) -> None:
        await self.db.execute(delete(CommentMention).where(CommentMention.comment_id == comment.id))
        await self.db.delete(comment)
        await self.audit.log(
            AuditAction.COMMENT_DELETED,
            resource_type=comment.context_kind.value,
            resource_id=comment.context_id,
            user_id=actor.id,
            old_value={"comment_id": comment.id},
        )

    async def purge(self, kind: EntityKind, entity_id: uuid.UUID) -> None:
        """Remove every comment and mention of an entity (hard delete cascade)."""
        await self.db.execute(
            delete(CommentMention).where(
                CommentMention.context_kind == kind,
                CommentMention.context_id == entity_id,
            )
        )
        await self.db.execute(
            delete(Comment).where(Comment.context_kind == kind, Comment.context_id == entity_id)
        )

    async def mentions_for(self, user_id: uuid.UUID, unread_only: bool = False) -> list[CommentMention]:
        query = select(CommentMention).where(CommentMention.user_id == user_id)
        if unread_only:
            query = query.where(CommentMention.is_read == False)
        result = await self.db.execute(query.order_by(CommentMention.id))
        return list(result.scalars().all())

    async def unread_mention_count(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(CommentMention.id)).where(
                CommentMention.user_id == user_id,
                CommentMention.is_read == False,
            )
        )
        return result.scalar() or 0

    async def mark_mentions_read(self, user_id: uuid.UUID, mention_id: Optional[uuid.UUID] = None) -> int:
        query = update(CommentMention).where(
            CommentMention.user_id == user_id,
            CommentMention.is_read == False,
        )
        if mention_id is not None:
            query = query.where(CommentMention.id == mention_id)
        result = await self.db.execute(query.values(is_read=True, read_at=datetime.utcnow()))
        return result.rowcount
