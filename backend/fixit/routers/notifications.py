"""In-app notifications router. Users only ever see their own."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.database import get_db
from fixit.core.errors import NotFoundError
from fixit.core.security import get_current_user
from fixit.models.notification import Notification
from fixit.models.user import User
from fixit.routers.deps import Pagination, pagination
from fixit.schemas.base import Envelope, PageEnvelope, ok, paged
from fixit.schemas.notification import NotificationResponse
from fixit.services.requests import Page

router = APIRouter(prefix="/notifications", tags=["notifications"])


async def _own_notification(db: AsyncSession, user: User, notification_id: UUID) -> Notification:
    notification = await db.get(Notification, notification_id)
    if notification is None or notification.recipient_id != user.id:
        raise NotFoundError("Notification not found")
    return notification


@router.get("", response_model=PageEnvelope[NotificationResponse])
async def list_notifications(
    unread: Optional[bool] = None,
    page: Pagination = Depends(pagination),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """List the caller's notifications, newest first."""
    query = select(Notification).where(Notification.recipient_id == current_user.id)
    if unread is not None:
        query = query.where(Notification.is_read == (not unread))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    result = await db.execute(
        query.order_by(Notification.created_at.desc()).offset((page.page - 1) * page.limit).limit(page.limit)
    )
    result_page = Page(items=list(result.scalars().all()), total=total, page=page.page, limit=page.limit)
    return paged(result_page, [NotificationResponse.model_validate(n) for n in result_page.items])


@router.get("/unread-count", response_model=Envelope[int])
async def unread_count(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    result = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.recipient_id == current_user.id,
            Notification.is_read == False,
        )
    )
    return ok(result.scalar() or 0)


@router.post("/read-all", response_model=Envelope[int])
async def mark_all_read(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    result = await db.execute(
        update(Notification)
        .where(Notification.recipient_id == current_user.id, Notification.is_read == False)
        .values(is_read=True, read_at=datetime.utcnow())
    )
    await db.commit()
    return ok(result.rowcount, "All notifications marked as read")


@router.get("/{notification_id}", response_model=Envelope[NotificationResponse])
async def get_notification(
    notification_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    notification = await _own_notification(db, current_user, notification_id)
    return ok(NotificationResponse.model_validate(notification))


@router.post("/{notification_id}/read", response_model=Envelope[NotificationResponse])
async def mark_read(
    notification_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    notification = await _own_notification(db, current_user, notification_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.utcnow()
        await db.commit()
        await db.refresh(notification)
    return ok(NotificationResponse.model_validate(notification), "Notification marked as read")


@router.delete("/{notification_id}", response_model=Envelope[None])
async def delete_notification(
    notification_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    notification = await _own_notification(db, current_user, notification_id)
    await db.execute(delete(Notification).where(Notification.id == notification.id))
    await db.commit()
    return ok(message="Notification deleted")
