"""
Report tests: management-only access, aggregation and CSV export.
"""

import csv
import io
import uuid
from datetime import datetime, timedelta

from sqlalchemy import select

from fixit.models.audit import AuditLog
from fixit.models.enums import (
    AssigneeKind,
    AuditAction,
    Category,
    FrequencyType,
    GlobalRole,
    PropertyRole,
    RequestStatus,
    ScheduleStatus,
)
from fixit.models.request import Request
from fixit.models.scheduled_maintenance import ScheduledMaintenance
from tests.conftest import auth_headers


async def seed_history(session_factory, estate, make_vendor):
    """Three resolved vendor jobs, one open request and a recurring schedule."""
    prop = estate["property"]
    fixer = await make_vendor(name="Sparky Electric", phone="+256700000002", email="jobs@sparky.test")
    base = datetime(2026, 3, 1, 9, 0)

    def resolved(vendor, category, hours, rating=None, day=0):
        created = base + timedelta(days=day)
        return Request(
            id=uuid.uuid4(),
            title=f"{category.value} job",
            category=category,
            property_id=prop.id,
            unit_id=estate["u1"].id,
            created_by_id=estate["tenant1"].id,
            assigned_to_kind=AssigneeKind.VENDOR,
            assigned_to_id=vendor.id,
            status=RequestStatus.VERIFIED,
            created_at=created,
            resolved_at=created + timedelta(hours=hours),
            feedback={"rating": rating} if rating else None,
        )

    rows = [
        resolved(estate["vendor"], Category.PLUMBING, 4, rating=5, day=0),
        resolved(estate["vendor"], Category.PLUMBING, 8, rating=3, day=1),
        resolved(fixer, Category.ELECTRICAL, 2, day=2),
        Request(
            id=uuid.uuid4(),
            title="Door sticks",
            category=Category.PLUMBING,
            property_id=prop.id,
            unit_id=estate["u2"].id,
            created_by_id=estate["tenant2"].id,
            status=RequestStatus.NEW,
            created_at=base + timedelta(days=3),
        ),
        ScheduledMaintenance(
            id=uuid.uuid4(),
            title="Gutter clean",
            category=Category.CLEANING,
            property_id=prop.id,
            created_by_id=estate["manager"].id,
            status=ScheduleStatus.SCHEDULED,
            scheduled_date=base + timedelta(days=10),
            next_due_date=base + timedelta(days=10),
            recurring=True,
            frequency={"type": FrequencyType.MONTHLY.value, "interval": 1},
            created_at=base + timedelta(days=4),
        ),
    ]
    async with session_factory() as db:
        db.add_all(rows)
        await db.commit()
    return fixer


# =============================================================================
# Access
# =============================================================================

async def test_tenant_cannot_generate_reports(client, estate):
    headers = auth_headers(estate["tenant1"])
    for path in ("maintenance-summary", "vendor-performance", "common-issues"):
        response = await client.get(f"/api/reports/{path}", headers=headers)
        assert response.status_code == 403, path


async def test_manager_cannot_report_on_foreign_property(client, estate, make_property):
    other, _ = await make_property(name="Elsewhere")
    response = await client.get(
        "/api/reports/common-issues",
        params={"property_id": str(other.id)},
        headers=auth_headers(estate["manager"]),
    )
    assert response.status_code == 403


async def test_landlord_without_properties_gets_empty_report(client, make_user):
    landlord = await make_user(GlobalRole.LANDLORD)
    response = await client.get("/api/reports/maintenance-summary", headers=auth_headers(landlord))
    assert response.status_code == 200
    assert response.json()["data"] == []


async def test_unknown_status_filter_is_rejected(client, estate):
    response = await client.get(
        "/api/reports/maintenance-summary",
        params={"status": "exploded"},
        headers=auth_headers(estate["manager"]),
    )
    assert response.status_code == 400


# =============================================================================
# Content
# =============================================================================

async def test_maintenance_summary_combines_requests_and_schedules(client, estate, make_vendor, session_factory):
    await seed_history(session_factory, estate, make_vendor)

    response = await client.get("/api/reports/maintenance-summary", headers=auth_headers(estate["manager"]))
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 5
    kinds = [row["type"] for row in body["data"]]
    assert kinds.count("request") == 4
    assert kinds.count("scheduled_maintenance") == 1

    # Newest first
    assert body["data"][0]["title"] == "Gutter clean"
    assert body["data"][0]["frequency"] == "monthly"
    plumbing = [row for row in body["data"] if row["assigned_to"] == "Quick Plumbers"]
    assert len(plumbing) == 2
    assert plumbing[0]["property_name"] == estate["property"].name


async def test_maintenance_summary_filters_by_status_and_paginates(client, estate, make_vendor, session_factory):
    await seed_history(session_factory, estate, make_vendor)
    headers = auth_headers(estate["manager"])

    verified = await client.get("/api/reports/maintenance-summary", params={"status": "verified"}, headers=headers)
    assert verified.json()["total"] == 3
    assert {row["status"] for row in verified.json()["data"]} == {"verified"}

    page = await client.get("/api/reports/maintenance-summary", params={"limit": 2, "page": 2}, headers=headers)
    assert page.json()["count"] == 2
    assert page.json()["pages"] == 3


async def test_vendor_performance_averages(client, estate, make_vendor, session_factory):
    fixer = await seed_history(session_factory, estate, make_vendor)

    response = await client.get("/api/reports/vendor-performance", headers=auth_headers(estate["manager"]))
    assert response.status_code == 200
    rows = {row["vendor_id"]: row for row in response.json()["data"]}

    plumbers = rows[str(estate["vendor"].id)]
    assert plumbers["total_requests"] == 2
    assert plumbers["average_resolution_hours"] == 6.0
    assert plumbers["average_rating"] == 4.0

    sparky = rows[str(fixer.id)]
    assert sparky["total_requests"] == 1
    assert sparky["average_resolution_hours"] == 2.0
    assert sparky["average_rating"] is None


async def test_common_issues_counts_per_category(client, estate, make_vendor, session_factory):
    await seed_history(session_factory, estate, make_vendor)

    response = await client.get(
        "/api/reports/common-issues",
        params={"property_id": str(estate["property"].id)},
        headers=auth_headers(estate["manager"]),
    )
    rows = response.json()["data"]
    assert rows[0] == {"category": "plumbing", "count": 3, "average_resolution_hours": 6.0}
    assert rows[1]["category"] == "electrical"


async def test_common_issues_respects_date_window(client, estate, make_vendor, session_factory):
    await seed_history(session_factory, estate, make_vendor)

    response = await client.get(
        "/api/reports/common-issues",
        params={"start_date": "2026-03-02T00:00:00", "end_date": "2026-03-02T23:59:59"},
        headers=auth_headers(estate["manager"]),
    )
    rows = response.json()["data"]
    assert rows == [{"category": "plumbing", "count": 1, "average_resolution_hours": 8.0}]


# =============================================================================
# Export
# =============================================================================

async def test_csv_export_has_header_and_rows(client, estate, make_vendor, session_factory, make_user, grant):
    await seed_history(session_factory, estate, make_vendor)
    landlord = await make_user(GlobalRole.LANDLORD)
    await grant(landlord, estate["property"], [PropertyRole.LANDLORD])

    response = await client.get(
        "/api/reports/vendor-performance",
        params={"format": "csv"},
        headers=auth_headers(landlord),
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "attachment" in response.headers["content-disposition"]

    rows = list(csv.DictReader(io.StringIO(response.text)))
    assert len(rows) == 2
    assert set(rows[0]) == {"vendor_id", "vendor_name", "total_requests", "average_resolution_hours", "average_rating"}
    sparky = next(row for row in rows if row["vendor_name"] == "Sparky Electric")
    assert sparky["average_rating"] == ""


async def test_report_generation_is_audited(client, estate, session_factory):
    await client.get(
        "/api/reports/common-issues",
        params={"format": "csv"},
        headers=auth_headers(estate["manager"]),
    )
    async with session_factory() as db:
        result = await db.execute(select(AuditLog).where(AuditLog.action == AuditAction.REPORT_EXPORTED))
        entries = result.scalars().all()
    assert len(entries) == 1
    assert entries[0].user_id == estate["manager"].id
    assert entries[0].details["report_type"] == "common_issues"
    assert entries[0].details["format"] == "csv"
