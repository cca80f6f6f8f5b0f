"""
Maintenance request API tests: creation, assignment, transitions,
visibility and authorization.
"""

import uuid

from httpx import AsyncClient
from sqlalchemy import select

from fixit.models.audit import AuditLog
from fixit.models.enums import AuditAction, JobStatus, NotificationKind, RequestStatus
from fixit.models.jobs import JobsOutbox
from fixit.models.notification import Notification
from fixit.models.request import Request
from fixit.models.vendor import Vendor
from tests.conftest import auth_headers


async def create_request(client: AsyncClient, user, prop, unit, **overrides):
    body = {
        "title": "Leaky tap",
        "category": "plumbing",
        "priority": "medium",
        "property": str(prop.id),
        "unit": str(unit.id),
        **overrides,
    }
    return await client.post("/api/requests", json=body, headers=auth_headers(user))


# =============================================================================
# Create and assign
# =============================================================================

async def test_manager_creates_request_with_audit_entry(client, estate, session_factory):
    response = await create_request(client, estate["manager"], estate["property"], estate["u1"])

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["status"] == "new"
    assert body["data"]["created_by_id"] == str(estate["manager"].id)

    async with session_factory() as db:
        entries = (await db.execute(
            select(AuditLog).where(AuditLog.resource_id == uuid.UUID(body["data"]["id"]))
        )).scalars().all()
    assert [e.action for e in entries] == [AuditAction.CREATE]
    assert entries[0].new_value["status"] == "new"


async def test_assign_vendor_moves_to_assigned_and_queues_vendor_messages(client, estate, session_factory):
    created = (await create_request(client, estate["manager"], estate["property"], estate["u1"])).json()["data"]
    vendor = estate["vendor"]

    response = await client.post(
        f"/api/requests/{created['id']}/assign",
        json={"assignee": str(vendor.id), "kind": "Vendor"},
        headers=auth_headers(estate["manager"]),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "assigned"
    assert data["assignee"] == {"kind": "Vendor", "id": str(vendor.id)}

    detail = (await client.get(f"/api/requests/{created['id']}", headers=auth_headers(estate["manager"]))).json()["data"]
    statuses = [h["status"] for h in detail["status_history"]]
    assert statuses == ["new", "assigned"]

    async with session_factory() as db:
        jobs = (await db.execute(select(JobsOutbox))).scalars().all()
        assigned_audit = (await db.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.REQUEST_ASSIGNED)
        )).scalars().all()
    vendor_jobs = [j for j in jobs if j.payload.get("vendor_id") == str(vendor.id)]
    assert {j.type for j in vendor_jobs} == {"send_sms", "send_email"}
    assert all(j.status == JobStatus.PENDING for j in vendor_jobs)
    assert len(assigned_audit) == 1


async def test_tenant_request_notifies_management(client, estate, session_factory):
    response = await create_request(client, estate["tenant1"], estate["property"], estate["u1"], title="Broken window")
    assert response.status_code == 201

    async with session_factory() as db:
        notes = (await db.execute(select(Notification))).scalars().all()
    assert [(n.recipient_id, n.kind) for n in notes] == [(estate["manager"].id, NotificationKind.NEW_REQUEST)]


async def test_unit_must_belong_to_property(client, estate, make_property):
    _, (foreign_unit,) = await make_property("Other Block", units=("Z9",))
    response = await create_request(client, estate["manager"], estate["property"], foreign_unit)

    assert response.status_code == 400
    assert response.json()["success"] is False


# =============================================================================
# Authorization
# =============================================================================

async def test_tenant_cannot_delete_request_of_another_unit(client, estate):
    created = (await create_request(client, estate["tenant1"], estate["property"], estate["u1"])).json()["data"]

    response = await client.delete(f"/api/requests/{created['id']}", headers=auth_headers(estate["tenant2"]))

    assert response.status_code == 403
    assert response.json()["success"] is False


async def test_tenant_can_create_request_for_own_unit(client, estate):
    response = await create_request(client, estate["tenant2"], estate["property"], estate["u2"])
    assert response.status_code == 201


async def test_tenant_cannot_create_request_for_other_unit(client, estate):
    response = await create_request(client, estate["tenant2"], estate["property"], estate["u1"])
    assert response.status_code == 403


async def test_tenant_cannot_assign(client, estate):
    created = (await create_request(client, estate["tenant1"], estate["property"], estate["u1"])).json()["data"]
    response = await client.post(
        f"/api/requests/{created['id']}/assign",
        json={"assignee": str(estate["vendor"].id), "kind": "Vendor"},
        headers=auth_headers(estate["tenant1"]),
    )
    assert response.status_code == 403


async def test_missing_token_is_rejected(client, estate):
    response = await client.get("/api/requests")
    assert response.status_code == 401


async def test_tenant_list_only_shows_own_unit(client, estate):
    await create_request(client, estate["tenant1"], estate["property"], estate["u1"], title="Unit one issue")
    await create_request(client, estate["tenant2"], estate["property"], estate["u2"], title="Unit two issue")

    tenant_view = (await client.get("/api/requests", headers=auth_headers(estate["tenant1"]))).json()
    manager_view = (await client.get("/api/requests", headers=auth_headers(estate["manager"]))).json()

    assert [r["title"] for r in tenant_view["data"]] == ["Unit one issue"]
    assert manager_view["total"] == 2


# =============================================================================
# Lifecycle
# =============================================================================

async def test_full_lifecycle_with_feedback(client, estate, session_factory):
    manager = estate["manager"]
    tenant = estate["tenant1"]
    created = (await create_request(client, tenant, estate["property"], estate["u1"])).json()["data"]
    request_id = created["id"]
    vendor = estate["vendor"]

    await client.post(
        f"/api/requests/{request_id}/assign",
        json={"assignee": str(vendor.id), "kind": "Vendor"},
        headers=auth_headers(manager),
    )
    for target in ("in_progress", "on_hold", "in_progress", "completed"):
        response = await client.post(
            f"/api/requests/{request_id}/status", json={"status": target}, headers=auth_headers(manager)
        )
        assert response.status_code == 200, response.json()
        assert response.json()["data"]["status"] == target

    verified = await client.post(
        f"/api/requests/{request_id}/status",
        json={"status": "verified", "feedback": {"rating": 4, "comment": "Quick job"}},
        headers=auth_headers(tenant),
    )
    assert verified.status_code == 200
    assert verified.json()["data"]["feedback"]["rating"] == 4

    async with session_factory() as db:
        stored = await db.get(Vendor, vendor.id)
    assert stored.total_jobs_completed == 1
    assert stored.rating_count == 1
    assert stored.average_rating == 4


async def test_invalid_transition_is_rejected(client, estate):
    created = (await create_request(client, estate["manager"], estate["property"], estate["u1"])).json()["data"]

    response = await client.post(
        f"/api/requests/{created['id']}/status", json={"status": "completed"}, headers=auth_headers(estate["manager"])
    )

    assert response.status_code == 422
    assert response.json()["success"] is False


async def test_reopen_returns_request_to_new(client, estate):
    manager = estate["manager"]
    request_id = (await create_request(client, manager, estate["property"], estate["u1"])).json()["data"]["id"]
    await client.post(
        f"/api/requests/{request_id}/assign",
        json={"assignee": str(estate["vendor"].id), "kind": "Vendor"},
        headers=auth_headers(manager),
    )
    for target in ("in_progress", "completed", "new"):
        response = await client.post(
            f"/api/requests/{request_id}/status", json={"status": target}, headers=auth_headers(manager)
        )
        assert response.status_code == 200

    data = response.json()["data"]
    assert data["status"] == "new"
    assert data["resolved_at"] is None


async def test_manager_deletes_request(client, estate):
    manager = estate["manager"]
    request_id = (await create_request(client, manager, estate["property"], estate["u1"])).json()["data"]["id"]

    response = await client.delete(f"/api/requests/{request_id}", headers=auth_headers(manager))
    assert response.status_code == 200

    missing = await client.get(f"/api/requests/{request_id}", headers=auth_headers(manager))
    assert missing.status_code == 404


# =============================================================================
# Comments and media
# =============================================================================

async def test_internal_notes_hidden_from_tenant(client, estate):
    manager, tenant = estate["manager"], estate["tenant1"]
    request_id = (await create_request(client, tenant, estate["property"], estate["u1"])).json()["data"]["id"]

    await client.post(
        f"/api/requests/{request_id}/comments",
        json={"message": "Landlord pays for this one", "is_internal_note": True},
        headers=auth_headers(manager),
    )
    await client.post(
        f"/api/requests/{request_id}/comments",
        json={"message": "A plumber is on the way"},
        headers=auth_headers(manager),
    )

    tenant_comments = (await client.get(f"/api/requests/{request_id}/comments", headers=auth_headers(tenant))).json()
    manager_comments = (await client.get(f"/api/requests/{request_id}/comments", headers=auth_headers(manager))).json()

    assert [c["message"] for c in tenant_comments["data"]] == ["A plumber is on the way"]
    assert len(manager_comments["data"]) == 2


async def test_comment_on_canceled_request_notifies_nobody(client, estate, session_factory):
    manager, tenant = estate["manager"], estate["tenant1"]
    request_id = (await create_request(client, tenant, estate["property"], estate["u1"])).json()["data"]["id"]
    canceled = await client.post(
        f"/api/requests/{request_id}/status", json={"status": "canceled"}, headers=auth_headers(manager)
    )
    assert canceled.status_code == 200

    async def request_notifications():
        async with session_factory() as db:
            rows = (await db.execute(
                select(Notification).where(Notification.related_id == uuid.UUID(request_id))
            )).scalars().all()
        return len(rows)

    before = await request_notifications()
    commented = await client.post(
        f"/api/requests/{request_id}/comments",
        json={"message": "Why was this canceled? The tap still leaks"},
        headers=auth_headers(tenant),
    )
    assert commented.status_code == 201
    assert await request_notifications() == before


async def test_comment_on_archived_request_notifies_nobody(client, estate, session_factory):
    manager, tenant = estate["manager"], estate["tenant1"]
    request_id = (await create_request(client, tenant, estate["property"], estate["u1"])).json()["data"]["id"]
    async with session_factory() as db:
        request = await db.get(Request, uuid.UUID(request_id))
        request.status = RequestStatus.ARCHIVED
        await db.commit()
        before = len((await db.execute(select(Notification))).scalars().all())

    commented = await client.post(
        f"/api/requests/{request_id}/comments",
        json={"message": f"Closing the file, thanks @{tenant.email}"},
        headers=auth_headers(manager),
    )
    assert commented.status_code == 201

    async with session_factory() as db:
        after = len((await db.execute(select(Notification))).scalars().all())
    assert after == before


async def test_upload_media_to_request(client, estate, storage):
    tenant = estate["tenant1"]
    request_id = (await create_request(client, tenant, estate["property"], estate["u1"])).json()["data"]["id"]

    response = await client.post(
        f"/api/requests/{request_id}/media",
        files=[("files", ("leak.jpg", b"\xff\xd8\xff\xe0fakejpeg", "image/jpeg"))],
        headers=auth_headers(tenant),
    )

    assert response.status_code == 201, response.json()
    media = response.json()["data"]
    assert len(media) == 1
    assert media[0]["filename"] == "leak.jpg"
    assert media[0]["thumbnail_url"].startswith("memory://")
    assert len(storage.objects) == 1


async def test_upload_rejects_unsupported_type(client, estate):
    tenant = estate["tenant1"]
    request_id = (await create_request(client, tenant, estate["property"], estate["u1"])).json()["data"]["id"]

    response = await client.post(
        f"/api/requests/{request_id}/media",
        files=[("files", ("run.sh", b"#!/bin/sh", "text/x-shellscript"))],
        headers=auth_headers(tenant),
    )

    assert response.status_code == 400
