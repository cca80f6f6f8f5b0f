"""Document generation schemas."""

from uuid import UUID

from pydantic import AliasChoices, Field

from fixit.models.enums import DocumentType
from fixit.schemas.base import BaseSchema


class DocumentGenerate(BaseSchema):
    document_type: DocumentType = Field(
        DocumentType.MAINTENANCE_REPORT, validation_alias=AliasChoices("document_type", "documentType", "type")
    )
    request_id: UUID = Field(..., validation_alias=AliasChoices("request_id", "requestId", "request"))
