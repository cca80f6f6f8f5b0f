"""Reports router - maintenance reporting for management, as JSON or CSV."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.database import get_db
from fixit.models.enums import AssigneeKind, Category
from fixit.routers.deps import Pagination, current_actor, get_audit, pagination
from fixit.schemas.base import Envelope, PageEnvelope, ok, paged
from fixit.services.audit import AuditService
from fixit.services.authorization import Actor
from fixit.services.reports import (
    ISSUE_COLUMNS,
    SUMMARY_COLUMNS,
    VENDOR_COLUMNS,
    ReportFilters,
    ReportService,
    to_csv,
)
from fixit.services.requests import Page

router = APIRouter(prefix="/reports", tags=["reports"])


class ReportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


def get_report_service(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(current_actor),
    audit: AuditService = Depends(get_audit),
) -> ReportService:
    return ReportService(db, actor, audit)


def csv_response(name: str, rows: list[dict[str, Any]], columns: list[str]) -> StreamingResponse:
    filename = f"{name}_{datetime.utcnow().strftime('%Y%m%d')}.csv"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return StreamingResponse(iter([to_csv(rows, columns)]), media_type="text/csv", headers=headers)


@router.get("/maintenance-summary", response_model=PageEnvelope[dict[str, Any]])
async def maintenance_summary(
    property_id: Optional[UUID] = None,
    item_status: Optional[str] = Query(None, alias="status", max_length=50),
    category: Optional[Category] = None,
    assigned_to: Optional[UUID] = None,
    assigned_to_kind: Optional[AssigneeKind] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    format: ReportFormat = ReportFormat.JSON,
    page: Pagination = Depends(pagination),
    reports: ReportService = Depends(get_report_service),
):
    """Requests and scheduled maintenance in one listing.

    The CSV export holds every matching row; JSON is paginated.
    """
    filters = ReportFilters(
        property_id=property_id,
        status=item_status.lower() if item_status else None,
        category=category.value if category else None,
        assigned_to_id=assigned_to,
        assigned_to_kind=assigned_to_kind,
        start_date=start_date,
        end_date=end_date,
    )
    rows = await reports.maintenance_summary(filters, format.value)
    if format == ReportFormat.CSV:
        return csv_response("maintenance_summary", rows, SUMMARY_COLUMNS)
    start = (page.page - 1) * page.limit
    result = Page(items=rows[start:start + page.limit], total=len(rows), page=page.page, limit=page.limit)
    return paged(result, result.items)


@router.get("/vendor-performance", response_model=Envelope[list[dict[str, Any]]])
async def vendor_performance(
    property_id: Optional[UUID] = None,
    vendor_id: Optional[UUID] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    format: ReportFormat = ReportFormat.JSON,
    reports: ReportService = Depends(get_report_service),
):
    """Resolved vendor jobs with average resolution time and rating."""
    filters = ReportFilters(
        property_id=property_id,
        vendor_id=vendor_id,
        start_date=start_date,
        end_date=end_date,
    )
    rows = await reports.vendor_performance(filters, format.value)
    if format == ReportFormat.CSV:
        return csv_response("vendor_performance", rows, VENDOR_COLUMNS)
    return ok(rows)


@router.get("/common-issues", response_model=Envelope[list[dict[str, Any]]])
async def common_issues(
    property_id: Optional[UUID] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    format: ReportFormat = ReportFormat.JSON,
    reports: ReportService = Depends(get_report_service),
):
    filters = ReportFilters(property_id=property_id, start_date=start_date, end_date=end_date)
    rows = await reports.common_issues(filters, format.value)
    if format == ReportFormat.CSV:
        return csv_response("common_issues", rows, ISSUE_COLUMNS)
    return ok(rows)
