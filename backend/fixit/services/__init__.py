"""Services for Fix It by Threalty."""

from fixit.services.storage import MediaRegistry, get_media_registry
from fixit.services.audit import AuditContext, AuditService
from fixit.services.media import MediaService, UploadPayload

__all__ = [
    "MediaRegistry",
    "get_media_registry",
    "AuditContext",
    "AuditService",
    "MediaService",
    "UploadPayload",
]
