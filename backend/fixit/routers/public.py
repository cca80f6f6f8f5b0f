"""Anonymous access to a request or scheduled task through its public link."""

from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.database import get_db
from fixit.core.rate_limit import limiter
from fixit.models.enums import EntityKind
from fixit.routers.deps import get_audit, get_media_service
from fixit.schemas.base import Envelope, ok
from fixit.schemas.public import PublicUpdate
from fixit.services.audit import AuditService
from fixit.services.media import MediaService
from fixit.services.public_links import PublicLinkGateway

router = APIRouter(prefix="/public", tags=["public"])

PUBLIC_WRITE_LIMIT = "20/minute"


def get_gateway(
    db: AsyncSession = Depends(get_db),
    audit: AuditService = Depends(get_audit),
    media: MediaService = Depends(get_media_service),
) -> PublicLinkGateway:
    return PublicLinkGateway(db, audit, media)


@router.get("/requests/{token}", response_model=Envelope[dict[str, Any]])
async def view_request(token: str, gateway: PublicLinkGateway = Depends(get_gateway)):
    return ok(await gateway.view(EntityKind.REQUEST, token))


@router.post("/requests/{token}", response_model=Envelope[dict[str, Any]])
@limiter.limit(PUBLIC_WRITE_LIMIT)
async def update_request(
    request: Request,
    token: str,
    data: PublicUpdate,
    gateway: PublicLinkGateway = Depends(get_gateway),
):
    """Status change and/or comment from someone without an account."""
    view = await gateway.update(
        EntityKind.REQUEST, token, data.name, data.phone, data.status, data.comment_message
    )
    return ok(view, "Update recorded")


@router.get("/scheduled/{token}", response_model=Envelope[dict[str, Any]])
async def view_schedule(token: str, gateway: PublicLinkGateway = Depends(get_gateway)):
    return ok(await gateway.view(EntityKind.SCHEDULED_MAINTENANCE, token))


@router.post("/scheduled/{token}", response_model=Envelope[dict[str, Any]])
@limiter.limit(PUBLIC_WRITE_LIMIT)
async def update_schedule(
    request: Request,
    token: str,
    data: PublicUpdate,
    gateway: PublicLinkGateway = Depends(get_gateway),
):
    view = await gateway.update(
        EntityKind.SCHEDULED_MAINTENANCE, token, data.name, data.phone, data.status, data.comment_message
    )
    return ok(view, "Update recorded")
