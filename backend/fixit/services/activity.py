"""Status-history feed shared by requests and scheduled maintenance."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.models.activity import StatusHistoryEntry
from fixit.models.enums import EntityKind

STATUS_LABELS = {
    "new": "New",
    "assigned": "Assigned",
    "in_progress": "In progress",
    "on_hold": "On hold",
    "completed": "Completed",
    "verified": "Verified",
    "reopened": "Reopened",
    "canceled": "Canceled",
    "archived": "Archived",
    "scheduled": "Scheduled",
    "paused": "Paused",
}


def status_label(status: str) -> str:
    return STATUS_LABELS.get(status, status.replace("_", " ").capitalize())


class StatusHistory:
    """Append-only status feed. One row per committed transition."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _next_sequence(self, kind: EntityKind, entity_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.max(StatusHistoryEntry.sequence)).where(
                StatusHistoryEntry.entity_kind == kind,
                StatusHistoryEntry.entity_id == entity_id,
            )
        )
        return (result.scalar() or 0) + 1

    async def append(
        self,
        kind: EntityKind,
        entity_id: uuid.UUID,
        status,
        changed_by_id: Optional[uuid.UUID],
        notes: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> StatusHistoryEntry:
        entry = StatusHistoryEntry(
            id=uuid.uuid4(),
            entity_kind=kind,
            entity_id=entity_id,
            sequence=await self._next_sequence(kind, entity_id),
            status=getattr(status, "value", status),
            changed_at=at or datetime.utcnow(),
            changed_by_id=changed_by_id,
            notes=notes,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def entries(self, kind: EntityKind, entity_id: uuid.UUID) -> list[StatusHistoryEntry]:
        result = await self.db.execute(
            select(StatusHistoryEntry)
            .where(
                StatusHistoryEntry.entity_kind == kind,
                StatusHistoryEntry.entity_id == entity_id,
            )
            .order_by(StatusHistoryEntry.sequence)
        )
        return list(result.scalars().all())

    async def purge(self, kind: EntityKind, entity_id: uuid.UUID) -> None:
        await self.db.execute(
            delete(StatusHistoryEntry).where(
                StatusHistoryEntry.entity_kind == kind,
                StatusHistoryEntry.entity_id == entity_id,
            )
        )
