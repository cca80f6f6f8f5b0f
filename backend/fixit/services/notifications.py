"""Notification dispatcher.

Fans a notification out per recipient: the in-app row is written in the
caller's transaction, email/SMS are queued in jobs_outbox according to the
recipient's channel preferences. Dispatch never fails the business operation.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.config import get_settings
from fixit.models.enums import (
    AuditAction,
    EntityKind,
    MANAGEMENT_ROLES,
    NotificationChannel,
    NotificationKind,
)
from fixit.models.notification import Notification
from fixit.models.property import PropertyUser
from fixit.models.user import User
from fixit.models.vendor import Vendor
from fixit.services.audit import AuditService
from fixit.services.jobs import JOB_SEND_EMAIL, JOB_SEND_SMS, JobsService

logger = logging.getLogger(__name__)

settings = get_settings()

SUBJECTS = {
    NotificationKind.NEW_REQUEST: "New maintenance request",
    NotificationKind.STATUS_UPDATE: "Maintenance status update",
    NotificationKind.NEW_COMMENT: "New comment",
    NotificationKind.ASSIGNMENT: "You have been assigned a task",
    NotificationKind.REMINDER_DUE: "Maintenance due",
    NotificationKind.REMINDER_OVERDUE: "Maintenance overdue",
    NotificationKind.TASK_COMPLETED: "Task completed",
    NotificationKind.TASK_VERIFIED: "Task verified",
    NotificationKind.USER_APPROVED: "Your account has been approved",
    NotificationKind.ROLE_UPDATED: "Your role has been updated",
    NotificationKind.MENTION: "You were mentioned",
}

ENTITY_PATHS = {
    EntityKind.REQUEST: "requests",
    EntityKind.SCHEDULED_MAINTENANCE: "scheduled-maintenance",
}


def entity_link(kind: EntityKind, entity_id: uuid.UUID) -> str:
    return f"{settings.frontend_url.rstrip('/')}/{ENTITY_PATHS.get(kind, kind.value)}/{entity_id}"


@dataclass(frozen=True)
class Related:
    kind: EntityKind
    id: uuid.UUID


class NotificationService:
    """Creates in-app notifications and queues outbound messages."""

    def __init__(self, db: AsyncSession, audit: Optional[AuditService] = None):
        self.db = db
        self.jobs = JobsService(db)
        self.audit = audit or AuditService(db)

    async def management_of(self, property_id: uuid.UUID) -> list[User]:
        """Users holding an active management role on the property."""
        result = await self.db.execute(
            select(PropertyUser, User)
            .join(User, User.id == PropertyUser.user_id)
            .where(
                PropertyUser.property_id == property_id,
                PropertyUser.is_active == True,
            )
        )
        users: dict[uuid.UUID, User] = {}
        for row, user in result.all():
            if row.role_set & MANAGEMENT_ROLES:
                users[user.id] = user
        return list(users.values())

    async def users_by_id(self, ids: Iterable[Optional[uuid.UUID]]) -> list[User]:
        wanted = {i for i in ids if i is not None}
        if not wanted:
            return []
        result = await self.db.execute(select(User).where(User.id.in_(wanted)))
        return list(result.scalars().all())

    async def notify(
        self,
        recipients: Iterable[Optional[User]],
        kind: NotificationKind,
        message: str,
        related: Optional[Related] = None,
        sender_id: Optional[uuid.UUID] = None,
        link: Optional[str] = None,
    ) -> list[Notification]:
        """Notify each distinct recipient once. The sender is never notified."""
        if link is None and related is not None:
            link = entity_link(related.kind, related.id)

        seen: set[uuid.UUID] = set()
        created: list[Notification] = []
        for user in recipients:
            if user is None or user.id in seen or user.id == sender_id or user.is_synthetic:
                continue
            seen.add(user.id)
            try:
                created.append(await self._deliver(user, kind, message, related, sender_id, link))
            except Exception as e:
                logger.error(f"[NOTIFY] Failed to notify user {user.id} ({kind.value}): {e}")
                await self.audit.log_failure(
                    AuditAction.NOTIFICATION_FAILED,
                    error_message=str(e),
                    resource_type=related.kind.value if related else None,
                    resource_id=related.id if related else None,
                    user_id=user.id,
                    details={"kind": kind},
                )
        return created

    async def _deliver(
        self,
        user: User,
        kind: NotificationKind,
        message: str,
        related: Optional[Related],
        sender_id: Optional[uuid.UUID],
        link: Optional[str],
    ) -> Notification:
        subject = f"{settings.app_name}: {SUBJECTS.get(kind, 'Notification')}"
        body = f"{message}\n\n{link}" if link else message

        notification = Notification(
            id=uuid.uuid4(),
            recipient_id=user.id,
            sender_id=sender_id,
            kind=kind,
            message=message,
            link=link,
            related_kind=related.kind if related else None,
            related_id=related.id if related else None,
            is_read=False,
        )

        if user.wants(NotificationChannel.EMAIL) and user.email:
            notification.email_payload = {"to": user.email, "subject": subject}
            await self.jobs.enqueue_email(notification.id, user.email, subject, body)
        if user.wants(NotificationChannel.SMS) and user.phone:
            notification.sms_payload = {"to": user.phone}
            await self.jobs.enqueue_sms(notification.id, user.phone, f"{subject}. {message}")

        self.db.add(notification)
        return notification

    async def notify_vendor(
        self,
        vendor: Optional[Vendor],
        kind: NotificationKind,
        message: str,
        link: Optional[str] = None,
    ) -> None:
        """Vendors have no inbox; they are reached by SMS and email only."""
        if vendor is None:
            return
        subject = f"{settings.app_name}: {SUBJECTS.get(kind, 'Notification')}"
        body = f"{message}\n\n{link}" if link else message
        dispatch_id = uuid.uuid4()
        try:
            if vendor.phone:
                await self.jobs.enqueue(
                    JOB_SEND_SMS,
                    {"vendor_id": str(vendor.id), "to": vendor.phone, "body": f"{subject}. {body}"},
                    unique_scope=f"{JOB_SEND_SMS}:vendor:{vendor.id}:{dispatch_id}",
                )
            if vendor.email:
                await self.jobs.enqueue(
                    JOB_SEND_EMAIL,
                    {"vendor_id": str(vendor.id), "to": vendor.email, "subject": subject, "text": body, "html": None},
                    unique_scope=f"{JOB_SEND_EMAIL}:vendor:{vendor.id}:{dispatch_id}",
                )
        except Exception as e:
            logger.error(f"[NOTIFY] Failed to queue vendor message for {vendor.id}: {e}")
            await self.audit.log_failure(
                AuditAction.NOTIFICATION_FAILED,
                error_message=str(e),
                resource_type=EntityKind.VENDOR.value,
                resource_id=vendor.id,
                details={"kind": kind},
            )
