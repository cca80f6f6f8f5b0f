"""Shared FastAPI dependencies for the routers."""

from dataclasses import dataclass

from fastapi import Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.database import async_session_factory, get_db
from fixit.core.security import get_actor, get_current_user
from fixit.models.user import User
from fixit.services.audit import AuditContext, AuditService
from fixit.services.authorization import Actor
from fixit.services.media import MediaService
from fixit.services.storage import MediaRegistry, get_media_registry


async def get_audit(request: Request, db: AsyncSession = Depends(get_db)) -> AuditService:
    """Audit writer bound to the request session and transport details."""
    return AuditService(db, AuditContext.from_request(request), async_session_factory)


async def get_media_service(
    db: AsyncSession = Depends(get_db),
    audit: AuditService = Depends(get_audit),
    registry: MediaRegistry = Depends(get_media_registry),
) -> MediaService:
    return MediaService(db, registry, audit)


async def current_actor(current_user: User = Depends(get_current_user)) -> Actor:
    return get_actor(current_user)


@dataclass
class Pagination:
    page: int
    limit: int


def pagination(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> Pagination:
    return Pagination(page=page, limit=limit)
