"""Audit log schemas."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fixit.models.enums import AuditAction, AuditStatus
from fixit.schemas.base import BaseSchema, IDMixin


class AuditLogResponse(BaseSchema, IDMixin):
    user_id: Optional[UUID] = None
    action: AuditAction
    resource_type: Optional[str] = None
    resource_id: Optional[UUID] = None
    old_value: Optional[dict[str, Any]] = None
    new_value: Optional[dict[str, Any]] = None
    details: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    external_user_identifier: Optional[str] = None
    status: AuditStatus
    error_message: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime
