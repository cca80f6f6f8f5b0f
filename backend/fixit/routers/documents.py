"""Generated documents router."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.database import get_db
from fixit.routers.deps import current_actor, get_audit, get_media_service
from fixit.schemas.base import Envelope, ok
from fixit.schemas.document import DocumentGenerate
from fixit.schemas.media import MediaResponse
from fixit.services.audit import AuditService
from fixit.services.authorization import Actor
from fixit.services.documents import DocumentService
from fixit.services.media import MediaService

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post("/generate", response_model=Envelope[MediaResponse], status_code=status.HTTP_201_CREATED)
async def generate_document(
    data: DocumentGenerate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(current_actor),
    audit: AuditService = Depends(get_audit),
    media: MediaService = Depends(get_media_service),
):
    """Render a PDF and attach it to the request's media."""
    document = await DocumentService(db, actor, audit, media).generate(data.document_type, data.request_id)
    return ok(MediaResponse.model_validate(document), "Document generated")
