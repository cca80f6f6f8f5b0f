"""Public-link capability for off-platform vendors.

Management mints a random token per request or scheduled task; only its
SHA-256 is stored. Holders of the token may view a redacted projection of
the item, comment on it and move it to in_progress or completed. Every
other outcome (unknown, disabled, expired) is the same 404.
"""

import logging
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.config import get_settings
from fixit.core.database import run_in_transaction
from fixit.core.errors import NotFoundError, StateError, ValidationError
from fixit.core.security import hash_token
from fixit.models.enums import (
    AuditAction,
    EntityKind,
    GlobalRole,
    RegistrationStatus,
    RequestStatus,
    ScheduleStatus,
)
from fixit.models.property import Property, Unit
from fixit.models.user import User
from fixit.services.activity import StatusHistory, status_label
from fixit.services.audit import AuditService
from fixit.services.authorization import Action, Actor, Authorizer, Target
from fixit.services.comments import CommentService
from fixit.services.items import ITEM_MODELS, MaintenanceItem, get_item, kind_of
from fixit.services.media import MediaService
from fixit.services.notifications import NotificationService
from fixit.services.requests import TRANSITIONS, RequestEvent, RequestService, event_for_status
from fixit.services.scheduled_maintenance import (
    SCHEDULE_TRANSITIONS,
    STATUS_EVENTS,
    ScheduledMaintenanceService,
    frequency_label,
)

logger = logging.getLogger(__name__)

settings = get_settings()

LINK_NOT_FOUND = "This link is invalid or has expired"
PUBLIC_STATUSES = ("in_progress", "completed")
SYNTHETIC_DOMAIN = "external.vendor"

PUBLIC_PATHS = {
    EntityKind.REQUEST: "requests/public",
    EntityKind.SCHEDULED_MAINTENANCE: "scheduled-maintenance/public",
}


def public_url(kind: EntityKind, token: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/{PUBLIC_PATHS[kind]}/{token}"


def synthetic_email(phone: str) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) < 7:
        raise ValidationError("A valid phone number is required", errors=[{"field": "phone", "reason": "invalid"}])
    return f"{digits}@{SYNTHETIC_DOMAIN}"


def public_request_events(current: RequestStatus, requested: RequestStatus) -> list[RequestEvent]:
    """Events a link holder may fire to reach ``requested``.

    Completing straight from ``assigned`` passes through ``in_progress``.
    """
    if current == RequestStatus.ASSIGNED and requested == RequestStatus.COMPLETED:
        return [RequestEvent.BEGIN, RequestEvent.FINISH]
    event = event_for_status(current, requested)
    if not TRANSITIONS[event].public:
        raise StateError("This status change is not available through a public link")
    return [event]


@dataclass(frozen=True)
class PublicLink:
    token: str
    url: str
    expires_at: datetime


class PublicLinkService:
    """Enable / disable links on behalf of management."""

    def __init__(self, db: AsyncSession, actor: Actor, audit: AuditService):
        self.db = db
        self.actor = actor
        self.audit = audit
        self.authorizer = Authorizer(db)

    async def _load(self, kind: EntityKind, item_id: uuid.UUID, action: Action) -> MaintenanceItem:
        item = await get_item(self.db, kind, item_id)
        await self.authorizer.require(self.actor, action, Target.for_item(item, kind))
        return item

    async def enable(
        self,
        kind: EntityKind,
        item_id: uuid.UUID,
        expires_in_days: Optional[int] = None,
    ) -> PublicLink:
        """Mint a fresh token. Any previous token stops working."""
        days = expires_in_days if expires_in_days is not None else settings.public_link_default_days
        if days < 1 or days > settings.public_link_max_days:
            raise ValidationError(
                f"Link expiry must be between 1 and {settings.public_link_max_days} days",
                errors=[{"field": "expires_in_days", "reason": "out of range"}],
            )
        token = secrets.token_urlsafe(32)

        async def op() -> PublicLink:
            item = await self._load(kind, item_id, Action.ENABLE_PUBLIC_LINK)
            expires_at = datetime.utcnow() + timedelta(days=days)
            was_enabled = item.public_link_enabled
            item.public_token_hash = hash_token(token)
            item.public_link_enabled = True
            item.public_link_expires_at = expires_at
            await self.audit.log(
                AuditAction.PUBLIC_LINK_ENABLED,
                resource_type=kind.value,
                resource_id=item.id,
                user_id=self.actor.id,
                old_value={"public_link_enabled": was_enabled},
                new_value={"public_link_enabled": True, "expires_at": expires_at},
            )
            return PublicLink(token=token, url=public_url(kind, token), expires_at=expires_at)

        link = await run_in_transaction(self.db, op)
        logger.info(f"[PUBLIC_LINK] Enabled link on {kind.value} {item_id} until {link.expires_at}")
        return link

    async def disable(self, kind: EntityKind, item_id: uuid.UUID) -> MaintenanceItem:
        """Turn the link off. The hash is kept so old audit rows still resolve."""

        async def op() -> MaintenanceItem:
            item = await self._load(kind, item_id, Action.DISABLE_PUBLIC_LINK)
            was_enabled = item.public_link_enabled
            item.public_link_enabled = False
            await self.audit.log(
                AuditAction.PUBLIC_LINK_DISABLED,
                resource_type=kind.value,
                resource_id=item.id,
                user_id=self.actor.id,
                old_value={"public_link_enabled": was_enabled},
                new_value={"public_link_enabled": False},
            )
            return item

        item = await run_in_transaction(self.db, op)
        logger.info(f"[PUBLIC_LINK] Disabled link on {kind.value} {item_id}")
        return item


class PublicLinkGateway:
    """Anonymous access through a token."""

    def __init__(self, db: AsyncSession, audit: AuditService, media: Optional[MediaService] = None):
        self.db = db
        self.audit = audit
        self.media = media
        self.history = StatusHistory(db)
        self.notifier = NotificationService(db, audit)
        self.comments = CommentService(db, audit, self.notifier)

    async def resolve(self, kind: EntityKind, token: str, now: Optional[datetime] = None) -> MaintenanceItem:
        now = now or datetime.utcnow()
        if not token or len(token) > 128:
            raise NotFoundError(LINK_NOT_FOUND)
        digest = hash_token(token)
        model = ITEM_MODELS[kind]
        result = await self.db.execute(
            select(model).where(model.public_token_hash == digest).execution_options(populate_existing=True)
        )
        item = result.scalar_one_or_none()
        if item is None or not secrets.compare_digest(item.public_token_hash, digest):
            raise NotFoundError(LINK_NOT_FOUND)
        if not item.public_link_active(now):
            raise NotFoundError(LINK_NOT_FOUND)
        return item

    async def view(self, kind: EntityKind, token: str) -> dict[str, Any]:
        item = await self.resolve(kind, token)
        return await self.project(item)

    async def project(self, item: MaintenanceItem) -> dict[str, Any]:
        """Redacted view: no ids, no internal notes, no contact details."""
        kind = kind_of(item)
        prop = await self.db.get(Property, item.property_id)
        unit = await self.db.get(Unit, item.unit_id) if item.unit_id else None

        comments = await self.comments.list_for(kind, item.id, include_internal=False)
        senders = {u.id: u for u in await self.notifier.users_by_id(c.sender_id for c in comments)}
        media = await self.media.for_owner(kind, item.id) if self.media else []
        history = await self.history.entries(kind, item.id)

        data: dict[str, Any] = {
            "title": item.title,
            "description": item.description,
            "category": item.category.value,
            "status": item.status.value,
            "status_label": status_label(item.status.value),
            "property": {
                "name": prop.name if prop else None,
                "address": prop.address_line if prop else None,
            },
            "unit": {"name": unit.unit_name} if unit else None,
            "comments": [
                {
                    "message": c.message,
                    "author": c.external_name if c.is_external else _display_name(senders.get(c.sender_id)),
                    "is_external": c.is_external,
                    "created_at": c.created_at,
                }
                for c in comments
            ],
            "media": [
                {
                    "filename": m.filename,
                    "mime_type": m.mime_type,
                    "url": m.url,
                    "thumbnail_url": m.thumbnail_url,
                    "created_at": m.created_at,
                }
                for m in media
            ],
            "status_history": [
                {
                    "status": h.status,
                    "label": status_label(h.status),
                    "changed_at": h.changed_at,
                }
                for h in history
            ],
            "allowed_statuses": list(PUBLIC_STATUSES),
            "link_expires_at": item.public_link_expires_at,
        }
        if kind == EntityKind.REQUEST:
            data["priority"] = item.priority.value
        else:
            data["next_due_date"] = item.next_due_date
            data["frequency_formatted"] = frequency_label(item)
        return data

    async def _external_principal(self, name: str, phone: str) -> User:
        """Find or create the synthetic user standing in for a phone number.

        The first name given is kept. Names sent with later updates are
        recorded on the comment and the audit row only.
        """
        email = synthetic_email(phone)
        result = await self.db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()
        if user is None:
            user = User(
                id=uuid.uuid4(),
                email=email,
                phone=phone,
                first_name=name,
                role=GlobalRole.VENDOR,
                registration_status=RegistrationStatus.ACTIVE,
                notification_channels=[],
                is_synthetic=True,
            )
            self.db.add(user)
            await self.db.flush()
        return user

    async def _transition(self, item: MaintenanceItem, status: str, principal: User, name: str, phone: str) -> None:
        notes = f"Updated via public link by {name}"
        if kind_of(item) == EntityKind.REQUEST:
            engine = RequestService(self.db, None, self.audit, self.media)
            for event in public_request_events(item.status, RequestStatus(status)):
                await engine.apply(item, event, principal.id, notes=notes, external_user_identifier=phone)
        else:
            event = STATUS_EVENTS[ScheduleStatus(status)]
            if not SCHEDULE_TRANSITIONS[event].public:
                raise StateError("This status change is not available through a public link")
            await ScheduledMaintenanceService(self.db, None, self.audit, self.media).apply(
                item, event, principal.id, notes=notes, external_user_identifier=phone
            )

    async def update(
        self,
        kind: EntityKind,
        token: str,
        name: str,
        phone: str,
        status: Optional[str] = None,
        comment_message: Optional[str] = None,
    ) -> dict[str, Any]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required", errors=[{"field": "name", "reason": "required"}])
        if status is not None and status not in PUBLIC_STATUSES:
            raise ValidationError(
                "Status must be in_progress or completed",
                errors=[{"field": "status", "reason": "not allowed"}],
            )
        comment_message = (comment_message or "").strip() or None
        if status is None and comment_message is None:
            raise ValidationError("Provide a status or a comment")

        async def op() -> MaintenanceItem:
            item = await self.resolve(kind, token)
            principal = await self._external_principal(name, phone)
            if comment_message:
                await self.comments.add(item, comment_message, principal, external_name=name, external_phone=phone)
            if status is not None and item.status.value != status:
                await self._transition(item, status, principal, name, phone)
            return item

        item = await run_in_transaction(self.db, op)
        logger.info(f"[PUBLIC_LINK] External update on {kind.value} {item.id} (status={status}, comment={bool(comment_message)})")
        return await self.project(item)


def _display_name(user: Optional[User]) -> str:
    if user is None:
        return "Property team"
    return user.first_name or "Property team"
