"""Generated documents stored through the media registry."""

import asyncio
import logging
import uuid
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.errors import ValidationError
from fixit.models.enums import AuditAction, DocumentType, EntityKind
from fixit.models.media import Media
from fixit.models.property import Property, Unit
from fixit.services.activity import StatusHistory, status_label
from fixit.services.audit import AuditService
from fixit.services.authorization import Action, Actor, Authorizer, Target
from fixit.services.comments import CommentService
from fixit.services.items import assignee_user, assignee_vendor, get_item
from fixit.services.media import MediaService, UploadPayload
from fixit.services.notifications import NotificationService
from fixit.services.pdf_generator import PDFGenerator, get_pdf_generator

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"


class DocumentService:
    def __init__(
        self,
        db: AsyncSession,
        actor: Actor,
        audit: AuditService,
        media: MediaService,
        generator: Optional[PDFGenerator] = None,
    ):
        self.db = db
        self.actor = actor
        self.audit = audit
        self.media = media
        self.generator = generator or get_pdf_generator()
        self.authorizer = Authorizer(db)
        self.notifier = NotificationService(db, audit)

    async def report_data(self, request, include_internal: bool) -> dict[str, Any]:
        """Flatten a request and its feeds for rendering."""
        prop = await self.db.get(Property, request.property_id)
        unit = await self.db.get(Unit, request.unit_id) if request.unit_id else None
        history = await StatusHistory(self.db).entries(EntityKind.REQUEST, request.id)
        comments = await CommentService(self.db, self.audit, self.notifier).list_for(
            EntityKind.REQUEST, request.id, include_internal=include_internal
        )
        authors = {u.id: u for u in await self.notifier.users_by_id(
            [c.sender_id for c in comments] + [request.created_by_id]
        )}
        user = await assignee_user(self.db, request)
        vendor = await assignee_vendor(self.db, request)
        creator = authors.get(request.created_by_id)

        return {
            "reference": str(request.id),
            "title": request.title,
            "description": request.description,
            "category": request.category.value.replace("_", " ").title(),
            "priority": request.priority.value.title(),
            "status_label": status_label(request.status.value),
            "created_at": request.created_at,
            "resolved_at": request.resolved_at,
            "property_name": prop.name if prop else None,
            "property_address": prop.address_line if prop else None,
            "unit_name": unit.unit_name if unit else None,
            "created_by": creator.full_name if creator else None,
            "assignee": (vendor.name if vendor else None) or (user.full_name if user else None),
            "feedback": request.feedback,
            "status_history": [
                {"changed_at": h.changed_at, "label": status_label(h.status), "notes": h.notes}
                for h in history
            ],
            "comments": [
                {
                    "author": c.external_name if c.is_external else (
                        authors[c.sender_id].full_name if c.sender_id in authors else "Unknown"
                    ),
                    "created_at": c.created_at,
                    "message": c.message,
                    "is_internal_note": c.is_internal_note,
                }
                for c in comments
            ],
            "media": [
                {"filename": m.filename, "mime_type": m.mime_type, "size": m.size}
                for m in await self.media.for_owner(EntityKind.REQUEST, request.id)
            ],
        }

    async def generate(self, document_type: DocumentType, request_id: uuid.UUID) -> Media:
        if document_type != DocumentType.MAINTENANCE_REPORT:
            raise ValidationError(f"Unsupported document type: {document_type.value}")
        request = await get_item(self.db, EntityKind.REQUEST, request_id)
        await self.authorizer.require(
            self.actor, Action.GENERATE_DOCUMENT, Target.for_item(request, EntityKind.REQUEST)
        )
        include_internal = await self.authorizer.is_management(self.actor, request.property_id)
        report = await self.report_data(request, include_internal)
        pdf = await asyncio.to_thread(self.generator.generate_maintenance_report, report)

        filename = f"maintenance-report-{request.id.hex[:8]}-{request.updated_at:%Y%m%d%H%M}.pdf"
        media = await self.media.attach(
            EntityKind.REQUEST,
            request.id,
            UploadPayload(data=pdf, mime_type=PDF_MIME, filename=filename),
            self.actor.id,
            tags=["document", document_type.value],
        )
        try:
            await self.audit.log(
                AuditAction.DOCUMENT_GENERATED,
                resource_type=EntityKind.REQUEST.value,
                resource_id=request.id,
                user_id=self.actor.id,
                new_value={"media_id": media.id, "document_type": document_type, "size": media.size},
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            await self.media.release([media.public_id])
            raise
        logger.info(f"[DOCUMENT] Generated {document_type.value} for request {request.id} ({media.size} bytes)")
        return media
