"""Invites router: property invitations and their acceptance."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.database import get_db
from fixit.core.rate_limit import limiter
from fixit.models.enums import InviteStatus
from fixit.routers.auth import CREDENTIAL_LIMIT, token_payload
from fixit.routers.deps import current_actor, get_audit
from fixit.schemas.auth import TokenResponse
from fixit.schemas.base import Envelope, ok
from fixit.schemas.invite import InviteAccept, InviteCreate, InvitePreview, InviteResponse, InviteSent
from fixit.services.audit import AuditService
from fixit.services.authorization import Actor
from fixit.services.invites import InviteService, invite_link

router = APIRouter(prefix="/invites", tags=["invites"])


def get_invite_service(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(current_actor),
    audit: AuditService = Depends(get_audit),
) -> InviteService:
    return InviteService(db, audit, actor)


def get_public_invite_service(
    db: AsyncSession = Depends(get_db),
    audit: AuditService = Depends(get_audit),
) -> InviteService:
    return InviteService(db, audit)


@router.post("", response_model=Envelope[InviteSent], status_code=status.HTTP_201_CREATED)
async def send_invite(data: InviteCreate, invites: InviteService = Depends(get_invite_service)):
    """Invite someone to a property. The link is emailed and also returned once."""
    invite, token = await invites.create(data.model_dump())
    sent = InviteSent(**InviteResponse.model_validate(invite).model_dump(), invite_link=invite_link(token))
    return ok(sent, "Invitation sent")


@router.get("", response_model=Envelope[list[InviteResponse]])
async def list_invites(
    property_id: Optional[UUID] = None,
    invite_status: Optional[InviteStatus] = Query(None, alias="status"),
    invites: InviteService = Depends(get_invite_service),
):
    """Invitations on the properties the caller manages."""
    rows = await invites.list_invites(property_id, invite_status)
    return ok([InviteResponse.model_validate(i) for i in rows])


@router.delete("/{invite_id}", response_model=Envelope[InviteResponse])
async def revoke_invite(invite_id: UUID, invites: InviteService = Depends(get_invite_service)):
    invite = await invites.revoke(invite_id)
    return ok(InviteResponse.model_validate(invite), "Invitation revoked")


# Anonymous, token-gated

@router.get("/verify/{token}", response_model=Envelope[InvitePreview])
async def verify_invite(token: str, invites: InviteService = Depends(get_public_invite_service)):
    invite, prop = await invites.describe(token)
    return ok(
        InvitePreview(
            email=invite.email,
            roles=invite.roles,
            property_name=prop.name,
            expires_at=invite.expires_at,
        )
    )


@router.post("/accept", response_model=Envelope[TokenResponse])
@limiter.limit(CREDENTIAL_LIMIT)
async def accept_invite(
    request: Request,
    data: InviteAccept,
    invites: InviteService = Depends(get_public_invite_service),
):
    user, token = await invites.accept(data.token, data.model_dump(exclude={"token"}))
    return ok(token_payload(user, token), "Invitation accepted")
