"""Audit logging service.

Audit entries are added to the caller's session so they commit atomically
with the business change. Audit is best-effort: a failure to build or stage
an entry is logged and recorded out-of-band, never raised to the caller.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from fastapi import Request as HTTPRequest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fixit.models.audit import AuditLog
from fixit.models.enums import AuditAction, AuditStatus

logger = logging.getLogger(__name__)

SENSITIVE_KEY_MARKERS = ("password", "token", "secret")
REDACTED = "[REDACTED]"


@dataclass(frozen=True)
class AuditContext:
    """Transport details attached to audit rows."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Optional[HTTPRequest]) -> "AuditContext":
        if request is None:
            return cls()
        return cls(
            ip_address=request.client.host if request.client else None,
            user_agent=(request.headers.get("user-agent") or "")[:500] or None,
        )


SYSTEM_CONTEXT = AuditContext(user_agent="fixit-scheduler")


def to_jsonable(value: Any) -> Any:
    """Convert model values to JSON, redacting credential-like keys."""
    if isinstance(value, dict):
        return {
            str(k): (REDACTED if any(m in str(k).lower() for m in SENSITIVE_KEY_MARKERS) else to_jsonable(v))
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


class AuditService:
    """Service for creating audit log entries."""

    def __init__(
        self,
        db: AsyncSession,
        context: Optional[AuditContext] = None,
        fallback_factory: Optional[async_sessionmaker] = None,
    ):
        self.db = db
        self.context = context or AuditContext()
        self.fallback_factory = fallback_factory

    async def log(
        self,
        action: AuditAction,
        resource_type: Optional[str] = None,
        resource_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
        old_value: Optional[dict[str, Any]] = None,
        new_value: Optional[dict[str, Any]] = None,
        details: Optional[dict[str, Any]] = None,
        external_user_identifier: Optional[str] = None,
        status: AuditStatus = AuditStatus.SUCCESS,
        error_message: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """Stage an audit log entry in the current transaction."""
        try:
            entry = AuditLog(
                action=AuditAction(action),
                resource_type=resource_type,
                resource_id=resource_id,
                user_id=user_id,
                old_value=to_jsonable(old_value) if old_value is not None else None,
                new_value=to_jsonable(new_value) if new_value is not None else None,
                details=to_jsonable(details or {}),
                ip_address=self.context.ip_address,
                user_agent=self.context.user_agent,
                external_user_identifier=external_user_identifier,
                status=status,
                error_message=error_message,
                description=description,
            )
            self.db.add(entry)
            return entry
        except Exception as e:
            logger.critical(f"[AUDIT] CRITICAL: Failed to create audit log for {action}: {e}")
            await self.record_failure(action, resource_type, resource_id, str(e))
            return None

    async def record_failure(
        self,
        action: Any,
        resource_type: Optional[str],
        resource_id: Optional[UUID],
        error: str,
    ) -> None:
        """Write a failure row in a separate transaction."""
        if self.fallback_factory is None:
            return
        try:
            async with self.fallback_factory() as session:
                session.add(
                    AuditLog(
                        action=AuditAction.UPDATE,
                        resource_type=resource_type,
                        resource_id=resource_id,
                        status=AuditStatus.FAILURE,
                        error_message=error[:2000],
                        description=f"Audit write failed for action {action}",
                        details={},
                    )
                )
                await session.commit()
        except Exception as e:
            logger.critical(f"[AUDIT] CRITICAL: Out-of-band audit failure record could not be written: {e}")

    async def log_transition(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: UUID,
        user_id: Optional[UUID],
        old_status: Any,
        new_status: Any,
        notes: Optional[str] = None,
        external_user_identifier: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """One entry per committed state transition."""
        return await self.log(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            user_id=user_id,
            old_value={"status": old_status},
            new_value={"status": new_status},
            details={**(details or {}), **({"notes": notes} if notes else {})},
            external_user_identifier=external_user_identifier,
            description=f"{resource_type} {resource_id} moved from {to_jsonable(old_status)} to {to_jsonable(new_status)}",
        )

    async def log_failure(
        self,
        action: AuditAction,
        error_message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        return await self.log(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            user_id=user_id,
            details=details,
            status=AuditStatus.FAILURE,
            error_message=error_message,
        )
