"""Operational reports for management: maintenance summary, vendor
performance and common issues. Every report can also be exported as CSV.
"""

import csv
import io
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.errors import AuthorizationError, ValidationError
from fixit.models.enums import AssigneeKind, AuditAction, Category, GlobalRole, RequestStatus, ScheduleStatus
from fixit.models.property import Property, Unit
from fixit.models.request import Request
from fixit.models.scheduled_maintenance import ScheduledMaintenance
from fixit.models.user import User
from fixit.models.vendor import Vendor
from fixit.services.audit import AuditService
from fixit.services.authorization import Action, Actor, Authorizer, Target

logger = logging.getLogger(__name__)

RESOLVED_STATUSES = (RequestStatus.COMPLETED, RequestStatus.VERIFIED)

SUMMARY_COLUMNS = [
    "type",
    "id",
    "title",
    "category",
    "priority",
    "status",
    "property_name",
    "unit_name",
    "created_by",
    "assigned_to",
    "created_at",
    "resolved_at",
    "feedback_rating",
    "recurring",
    "frequency",
]
VENDOR_COLUMNS = ["vendor_id", "vendor_name", "total_requests", "average_resolution_hours", "average_rating"]
ISSUE_COLUMNS = ["category", "count", "average_resolution_hours"]


@dataclass
class ReportFilters:
    property_id: Optional[uuid.UUID] = None
    status: Optional[str] = None
    category: Optional[str] = None
    assigned_to_id: Optional[uuid.UUID] = None
    assigned_to_kind: Optional[AssigneeKind] = None
    vendor_id: Optional[uuid.UUID] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    def describe(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


def _hours(total_seconds: float, count: int) -> Optional[float]:
    if not count:
        return None
    return round(total_seconds / count / 3600, 2)


def _stamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def to_csv(rows: list[dict[str, Any]], columns: list[str]) -> str:
    """Render report rows as CSV text with a header line."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow({k: "" if row.get(k) is None else row.get(k) for k in columns})
    return buffer.getvalue()


class ReportService:
    """Builds reports over the properties the actor manages."""

    def __init__(self, db: AsyncSession, actor: Actor, audit: AuditService):
        self.db = db
        self.actor = actor
        self.audit = audit
        self.authorizer = Authorizer(db)

    async def _scope(self, property_id: Optional[uuid.UUID]) -> Optional[list[uuid.UUID]]:
        """Property ids the report may read; None means every property."""
        if property_id is not None:
            await self.authorizer.require(self.actor, Action.EXPORT_REPORT, Target.for_property(property_id))
            return [property_id]
        if self.actor.role == GlobalRole.ADMIN:
            return None
        if self.actor.role not in (GlobalRole.LANDLORD, GlobalRole.PROPERTY_MANAGER):
            raise AuthorizationError("Not authorized to generate reports")
        return await self.authorizer.managed_property_ids(self.actor)

    async def _record(self, report_type: str, filters: ReportFilters, fmt: str, rows: int) -> None:
        await self.audit.log(
            AuditAction.REPORT_EXPORTED,
            resource_type="report",
            user_id=self.actor.id,
            details={"report_type": report_type, "filters": filters.describe(), "format": fmt, "rows": rows},
            description=f"Generated {report_type} report",
        )
        await self.db.commit()
        logger.info(f"[REPORT] {report_type} ({fmt}, {rows} rows) generated by {self.actor.id}")

    @staticmethod
    def _validate(filters: ReportFilters) -> None:
        if filters.status is not None:
            valid = {s.value for s in RequestStatus} | {s.value for s in ScheduleStatus}
            if filters.status not in valid:
                raise ValidationError(
                    f"Invalid status filter: {filters.status}",
                    errors=[{"field": "status", "reason": "unknown"}],
                )
        if filters.category is not None and filters.category not in {c.value for c in Category}:
            raise ValidationError(
                f"Invalid category filter: {filters.category}",
                errors=[{"field": "category", "reason": "unknown"}],
            )
        if filters.start_date and filters.end_date and filters.start_date > filters.end_date:
            raise ValidationError(
                "start_date must be before end_date",
                errors=[{"field": "start_date", "reason": "after end_date"}],
            )

    # Maintenance summary

    async def maintenance_summary(self, filters: ReportFilters, fmt: str = "json") -> list[dict[str, Any]]:
        """Requests and scheduled maintenance combined, newest first."""
        self._validate(filters)
        scope = await self._scope(filters.property_id)
        if scope == []:
            await self._record("maintenance_summary", filters, fmt, 0)
            return []

        requests = await self._load(Request, filters, scope, scheduled=False)
        schedules = await self._load(ScheduledMaintenance, filters, scope, scheduled=True)
        names = await self._names(requests + schedules)

        rows = [self._request_row(r, names) for r in requests]
        rows += [self._schedule_row(s, names) for s in schedules]
        rows.sort(key=lambda row: row["created_at"] or "", reverse=True)
        await self._record("maintenance_summary", filters, fmt, len(rows))
        return rows

    async def _load(self, model, filters: ReportFilters, scope, scheduled: bool) -> list:
        statuses = ScheduleStatus if scheduled else RequestStatus
        query = select(model).where(model.is_active == True)
        if scope is not None:
            query = query.where(model.property_id.in_(scope))
        if filters.status is not None:
            if filters.status not in {s.value for s in statuses}:
                return []
            query = query.where(model.status == statuses(filters.status))
        if filters.category is not None:
            query = query.where(model.category == Category(filters.category))
        if filters.assigned_to_id is not None:
            query = query.where(model.assigned_to_id == filters.assigned_to_id)
            if filters.assigned_to_kind is not None:
                query = query.where(model.assigned_to_kind == filters.assigned_to_kind)
        # Schedules are dated by when they are planned, requests by when they were raised
        dated = model.scheduled_date if scheduled else model.created_at
        if filters.start_date is not None:
            query = query.where(dated >= filters.start_date)
        if filters.end_date is not None:
            query = query.where(dated <= filters.end_date)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _names(self, items: list) -> dict[tuple[str, uuid.UUID], str]:
        """Display names for properties, units, creators and assignees."""
        ids: dict[str, set[uuid.UUID]] = {"property": set(), "unit": set(), "user": set(), "vendor": set()}
        for item in items:
            ids["property"].add(item.property_id)
            if item.unit_id:
                ids["unit"].add(item.unit_id)
            if item.created_by_id:
                ids["user"].add(item.created_by_id)
            if item.assigned_to_id:
                bucket = "vendor" if item.assigned_to_kind == AssigneeKind.VENDOR else "user"
                ids[bucket].add(item.assigned_to_id)

        names: dict[tuple[str, uuid.UUID], str] = {}
        lookups = (
            ("property", Property, lambda p: p.name),
            ("unit", Unit, lambda u: u.unit_name),
            ("user", User, lambda u: u.full_name),
            ("vendor", Vendor, lambda v: v.name),
        )
        for bucket, model, label in lookups:
            if not ids[bucket]:
                continue
            result = await self.db.execute(select(model).where(model.id.in_(ids[bucket])))
            for row in result.scalars().all():
                names[(bucket, row.id)] = label(row)
        return names

    @staticmethod
    def _common(item, names) -> dict[str, Any]:
        assignee = None
        if item.assigned_to_id:
            bucket = "vendor" if item.assigned_to_kind == AssigneeKind.VENDOR else "user"
            assignee = names.get((bucket, item.assigned_to_id))
        return {
            "id": str(item.id),
            "title": item.title,
            "category": item.category.value,
            "status": item.status.value,
            "property_name": names.get(("property", item.property_id)),
            "unit_name": names.get(("unit", item.unit_id)) if item.unit_id else None,
            "created_by": names.get(("user", item.created_by_id)) if item.created_by_id else None,
            "assigned_to": assignee,
            "created_at": _stamp(item.created_at),
        }

    def _request_row(self, request: Request, names) -> dict[str, Any]:
        row = self._common(request, names)
        row.update(
            type="request",
            priority=request.priority.value,
            resolved_at=_stamp(request.resolved_at),
            feedback_rating=(request.feedback or {}).get("rating"),
            recurring=None,
            frequency=None,
        )
        return row

    def _schedule_row(self, schedule: ScheduledMaintenance, names) -> dict[str, Any]:
        row = self._common(schedule, names)
        frequency = schedule.frequency or {}
        row.update(
            type="scheduled_maintenance",
            priority=None,
            resolved_at=_stamp(schedule.last_executed_at),
            feedback_rating=None,
            recurring=schedule.recurring,
            frequency=frequency.get("type") if schedule.recurring else None,
        )
        return row

    # Vendor performance

    async def vendor_performance(self, filters: ReportFilters, fmt: str = "json") -> list[dict[str, Any]]:
        """Per vendor: resolved jobs, average resolution time and rating."""
        self._validate(filters)
        scope = await self._scope(filters.property_id)
        if scope == []:
            await self._record("vendor_performance", filters, fmt, 0)
            return []

        query = select(Request).where(
            Request.status.in_(RESOLVED_STATUSES),
            Request.assigned_to_kind == AssigneeKind.VENDOR,
            Request.assigned_to_id.is_not(None),
        )
        if scope is not None:
            query = query.where(Request.property_id.in_(scope))
        if filters.vendor_id is not None:
            query = query.where(Request.assigned_to_id == filters.vendor_id)
        if filters.start_date is not None:
            query = query.where(Request.resolved_at >= filters.start_date)
        if filters.end_date is not None:
            query = query.where(Request.resolved_at <= filters.end_date)
        result = await self.db.execute(query)

        stats: dict[uuid.UUID, dict[str, Any]] = {}
        for request in result.scalars().all():
            entry = stats.setdefault(
                request.assigned_to_id,
                {"total": 0, "resolved": 0, "seconds": 0.0, "rated": 0, "rating": 0},
            )
            entry["total"] += 1
            if request.resolved_at and request.created_at:
                entry["resolved"] += 1
                entry["seconds"] += (request.resolved_at - request.created_at).total_seconds()
            rating = (request.feedback or {}).get("rating")
            if rating:
                entry["rated"] += 1
                entry["rating"] += rating

        vendors = {}
        if stats:
            found = await self.db.execute(select(Vendor).where(Vendor.id.in_(list(stats))))
            vendors = {v.id: v for v in found.scalars().all()}

        rows = []
        for vendor_id, entry in stats.items():
            vendor = vendors.get(vendor_id)
            rows.append({
                "vendor_id": str(vendor_id),
                "vendor_name": (vendor.name if vendor else None) or (vendor.email if vendor else None),
                "total_requests": entry["total"],
                "average_resolution_hours": _hours(entry["seconds"], entry["resolved"]),
                "average_rating": round(entry["rating"] / entry["rated"], 2) if entry["rated"] else None,
            })
        rows.sort(key=lambda row: (-row["total_requests"], row["vendor_name"] or ""))
        await self._record("vendor_performance", filters, fmt, len(rows))
        return rows

    # Common issues

    async def common_issues(self, filters: ReportFilters, fmt: str = "json") -> list[dict[str, Any]]:
        """Request counts per category, most frequent first."""
        self._validate(filters)
        scope = await self._scope(filters.property_id)
        if scope == []:
            await self._record("common_issues", filters, fmt, 0)
            return []

        query = select(Request.category, Request.created_at, Request.resolved_at)
        if scope is not None:
            query = query.where(Request.property_id.in_(scope))
        if filters.start_date is not None:
            query = query.where(Request.created_at >= filters.start_date)
        if filters.end_date is not None:
            query = query.where(Request.created_at <= filters.end_date)
        result = await self.db.execute(query)

        stats: dict[Category, dict[str, Any]] = {}
        for category, created_at, resolved_at in result.all():
            entry = stats.setdefault(category, {"count": 0, "resolved": 0, "seconds": 0.0})
            entry["count"] += 1
            if created_at and resolved_at:
                entry["resolved"] += 1
                entry["seconds"] += (resolved_at - created_at).total_seconds()

        rows = [
            {
                "category": category.value,
                "count": entry["count"],
                "average_resolution_hours": _hours(entry["seconds"], entry["resolved"]),
            }
            for category, entry in stats.items()
        ]
        rows.sort(key=lambda row: (-row["count"], row["category"]))
        await self._record("common_issues", filters, fmt, len(rows))
        return rows
