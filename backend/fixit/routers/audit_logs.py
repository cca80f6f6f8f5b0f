"""Audit log router (administrators only)."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.database import get_db
from fixit.core.errors import NotFoundError
from fixit.core.security import require_roles
from fixit.models.audit import AuditLog
from fixit.models.enums import AuditAction, AuditStatus, GlobalRole
from fixit.routers.deps import Pagination, pagination
from fixit.schemas.audit import AuditLogResponse
from fixit.schemas.base import Envelope, PageEnvelope, ok, paged
from fixit.services.requests import Page

router = APIRouter(
    prefix="/audit-logs",
    tags=["audit-logs"],
    dependencies=[Depends(require_roles(GlobalRole.ADMIN))],
)


@router.get("", response_model=PageEnvelope[AuditLogResponse])
async def list_audit_logs(
    action: Optional[AuditAction] = None,
    resource_type: Optional[str] = Query(None, max_length=50),
    resource_id: Optional[UUID] = None,
    user_id: Optional[UUID] = None,
    audit_status: Optional[AuditStatus] = Query(None, alias="status"),
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: Pagination = Depends(pagination),
    db: AsyncSession = Depends(get_db),
):
    """Search the audit trail, newest first."""
    query = select(AuditLog)
    if action:
        query = query.where(AuditLog.action == action)
    if resource_type:
        query = query.where(AuditLog.resource_type == resource_type)
    if resource_id:
        query = query.where(AuditLog.resource_id == resource_id)
    if user_id:
        query = query.where(AuditLog.user_id == user_id)
    if audit_status:
        query = query.where(AuditLog.status == audit_status)
    if date_from:
        query = query.where(AuditLog.created_at >= date_from)
    if date_to:
        query = query.where(AuditLog.created_at <= date_to)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    result = await db.execute(
        query.order_by(AuditLog.created_at.desc()).offset((page.page - 1) * page.limit).limit(page.limit)
    )
    result_page = Page(items=list(result.scalars().all()), total=total, page=page.page, limit=page.limit)
    return paged(result_page, [AuditLogResponse.model_validate(a) for a in result_page.items])


@router.get("/{audit_log_id}", response_model=Envelope[AuditLogResponse])
async def get_audit_log(audit_log_id: UUID, db: AsyncSession = Depends(get_db)):
    entry = await db.get(AuditLog, audit_log_id)
    if entry is None:
        raise NotFoundError("Audit log entry not found")
    return ok(AuditLogResponse.model_validate(entry))
