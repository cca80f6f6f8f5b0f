"""
Public link tests: redacted view, anonymous updates, disable and expiry.
"""

import uuid
from datetime import datetime, timedelta

from sqlalchemy import select

from fixit.models.activity import StatusHistoryEntry
from fixit.models.audit import AuditLog
from fixit.models.enums import AuditAction, EntityKind
from fixit.models.request import Request
from fixit.models.user import User
from fixit.services.public_links import LINK_NOT_FOUND, synthetic_email
from tests.conftest import auth_headers

VENDOR_PHONE = "+256700111222"


async def assigned_request_with_link(client, estate) -> tuple[str, str]:
    manager = estate["manager"]
    headers = auth_headers(manager)
    created = await client.post(
        "/api/requests",
        json={
            "title": "Leaky tap",
            "category": "plumbing",
            "priority": "medium",
            "property": str(estate["property"].id),
            "unit": str(estate["u1"].id),
        },
        headers=headers,
    )
    request_id = created.json()["data"]["id"]
    await client.post(
        f"/api/requests/{request_id}/assign",
        json={"assignee": str(estate["vendor"].id), "kind": "Vendor"},
        headers=headers,
    )
    await client.post(
        f"/api/requests/{request_id}/comments",
        json={"message": "Tenant owes two months, do not discuss", "isInternalNote": True},
        headers=headers,
    )
    link = await client.post(f"/api/requests/{request_id}/public-link", json={"expiresInDays": 7}, headers=headers)
    assert link.status_code == 200, link.json()
    return request_id, link.json()["data"]["token"]


def test_synthetic_email_is_derived_from_phone_digits():
    assert synthetic_email("+256 700-111-222") == "256700111222@external.vendor"


async def test_enable_returns_token_and_expiry(client, estate, session_factory):
    request_id, token = await assigned_request_with_link(client, estate)

    async with session_factory() as db:
        request = await db.get(Request, uuid.UUID(request_id))
    assert request.public_link_enabled is True
    assert request.public_token_hash != token
    assert timedelta(days=6) < request.public_link_expires_at - datetime.utcnow() <= timedelta(days=7)


async def test_public_view_is_redacted(client, estate):
    _, token = await assigned_request_with_link(client, estate)

    response = await client.get(f"/api/public/requests/{token}")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["title"] == "Leaky tap"
    assert data["status"] == "assigned"
    assert data["property"]["name"] == estate["property"].name
    assert data["comments"] == []
    assert "id" not in data
    assert "created_by_id" not in data
    assert "assignee" not in data
    assert data["allowed_statuses"] == ["in_progress", "completed"]


async def test_vendor_completes_through_public_link(client, estate, session_factory):
    request_id, token = await assigned_request_with_link(client, estate)

    response = await client.post(
        f"/api/public/requests/{token}",
        json={"status": "completed", "commentMessage": "fixed", "name": "Juma", "phone": VENDOR_PHONE},
    )

    assert response.status_code == 200, response.json()
    assert response.json()["data"]["status"] == "completed"

    async with session_factory() as db:
        request = await db.get(Request, uuid.UUID(request_id))
        last = (await db.execute(
            select(StatusHistoryEntry)
            .where(StatusHistoryEntry.entity_kind == EntityKind.REQUEST, StatusHistoryEntry.entity_id == request.id)
            .order_by(StatusHistoryEntry.sequence.desc())
        )).scalars().first()
        principal = await db.get(User, last.changed_by_id)
        completed_audit = (await db.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.REQUEST_COMPLETED)
        )).scalar_one()

    assert request.status.value == "completed"
    assert request.resolved_at is not None
    assert principal.is_synthetic is True
    assert principal.email == "256700111222@external.vendor"
    assert completed_audit.external_user_identifier == VENDOR_PHONE

    view = (await client.get(f"/api/public/requests/{token}")).json()["data"]
    assert [(c["message"], c["author"], c["is_external"]) for c in view["comments"]] == [("fixed", "Juma", True)]
    assert [h["status"] for h in view["status_history"]] == ["new", "assigned", "in_progress", "completed"]


async def test_repeat_updates_reuse_the_synthetic_user(client, estate, session_factory):
    _, token = await assigned_request_with_link(client, estate)

    for message in ("on my way", "arrived"):
        response = await client.post(
            f"/api/public/requests/{token}",
            json={"commentMessage": message, "name": "Juma", "phone": VENDOR_PHONE},
        )
        assert response.status_code == 200

    async with session_factory() as db:
        synthetic = (await db.execute(select(User).where(User.is_synthetic == True))).scalars().all()
    assert len(synthetic) == 1


async def test_public_link_cannot_verify(client, estate):
    _, token = await assigned_request_with_link(client, estate)

    response = await client.post(
        f"/api/public/requests/{token}",
        json={"status": "verified", "name": "Juma", "phone": VENDOR_PHONE},
    )

    assert response.status_code == 400


async def test_synthetic_user_cannot_sign_in(client, estate, session_factory):
    _, token = await assigned_request_with_link(client, estate)
    await client.post(
        f"/api/public/requests/{token}",
        json={"status": "in_progress", "name": "Juma", "phone": VENDOR_PHONE},
    )

    async with session_factory() as db:
        synthetic = (await db.execute(select(User).where(User.is_synthetic == True))).scalar_one()

    response = await client.get("/api/auth/me", headers=auth_headers(synthetic))
    assert response.status_code == 401


async def test_disabled_link_returns_not_found(client, estate):
    request_id, token = await assigned_request_with_link(client, estate)

    disabled = await client.delete(f"/api/requests/{request_id}/public-link", headers=auth_headers(estate["manager"]))
    assert disabled.status_code == 200
    assert disabled.json()["data"]["public_link_enabled"] is False

    view = await client.get(f"/api/public/requests/{token}")
    update = await client.post(
        f"/api/public/requests/{token}",
        json={"status": "completed", "name": "Juma", "phone": VENDOR_PHONE},
    )

    for response in (view, update):
        assert response.status_code == 404
        assert response.json()["message"] == LINK_NOT_FOUND


async def test_expired_link_returns_not_found(client, estate, session_factory):
    request_id, token = await assigned_request_with_link(client, estate)

    async with session_factory() as db:
        request = await db.get(Request, uuid.UUID(request_id))
        request.public_link_expires_at = datetime.utcnow() - timedelta(minutes=1)
        await db.commit()

    response = await client.get(f"/api/public/requests/{token}")
    assert response.status_code == 404
    assert response.json()["message"] == LINK_NOT_FOUND


async def test_unknown_token_returns_not_found(client, estate):
    response = await client.get("/api/public/requests/not-a-real-token")
    assert response.status_code == 404
    assert response.json()["message"] == LINK_NOT_FOUND


async def test_reenabling_rotates_the_token(client, estate):
    request_id, old_token = await assigned_request_with_link(client, estate)

    fresh = await client.post(f"/api/requests/{request_id}/public-link", headers=auth_headers(estate["manager"]))
    new_token = fresh.json()["data"]["token"]

    assert new_token != old_token
    assert (await client.get(f"/api/public/requests/{old_token}")).status_code == 404
    assert (await client.get(f"/api/public/requests/{new_token}")).status_code == 200


async def test_tenant_cannot_enable_public_link(client, estate):
    request_id, _ = await assigned_request_with_link(client, estate)

    response = await client.post(f"/api/requests/{request_id}/public-link", headers=auth_headers(estate["tenant1"]))
    assert response.status_code == 403


async def test_public_history_omits_internal_notes(client, estate):
    request_id, token = await assigned_request_with_link(client, estate)
    started = await client.post(
        f"/api/requests/{request_id}/status",
        json={"status": "in_progress", "notes": "Gate code is 4411"},
        headers=auth_headers(estate["manager"]),
    )
    assert started.status_code == 200

    response = await client.get(f"/api/public/requests/{token}")
    history = response.json()["data"]["status_history"]
    assert [h["status"] for h in history] == ["new", "assigned", "in_progress"]
    assert all(set(h) == {"status", "label", "changed_at"} for h in history)
    assert "4411" not in response.text


async def test_synthetic_user_keeps_first_name_across_updates(client, estate, session_factory):
    _, token = await assigned_request_with_link(client, estate)

    for name, message in (("Juma", "on my way"), ("Okello", "covering for Juma")):
        response = await client.post(
            f"/api/public/requests/{token}",
            json={"commentMessage": message, "name": name, "phone": VENDOR_PHONE},
        )
        assert response.status_code == 200

    async with session_factory() as db:
        principal = (await db.execute(select(User).where(User.is_synthetic == True))).scalar_one()
        updates = (await db.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.PUBLIC_UPDATE).order_by(AuditLog.created_at)
        )).scalars().all()

    assert principal.first_name == "Juma"
    assert [u.details["external_name"] for u in updates] == ["Juma", "Okello"]

    view = (await client.get(f"/api/public/requests/{token}")).json()["data"]
    assert [c["author"] for c in view["comments"]] == ["Juma", "Okello"]


# =============================================================================
# Scheduled maintenance links
# =============================================================================

async def schedule_with_link(client, estate) -> tuple[str, str]:
    headers = auth_headers(estate["manager"])
    created = await client.post(
        "/api/scheduled-maintenance",
        json={
            "title": "Service the borehole pump",
            "category": "plumbing",
            "property": str(estate["property"].id),
            "scheduledDate": "2030-01-15T00:00:00",
            "recurring": True,
            "frequency": {"type": "monthly", "interval": 1, "dayOfMonth": 15},
            "assignedTo": {"assignee": str(estate["vendor"].id), "kind": "Vendor"},
        },
        headers=headers,
    )
    assert created.status_code == 201, created.json()
    schedule_id = created.json()["data"]["id"]
    link = await client.post(
        f"/api/scheduled-maintenance/{schedule_id}/public-link", json={"expiresInDays": 7}, headers=headers
    )
    assert link.status_code == 200, link.json()
    return schedule_id, link.json()["data"]["token"]


async def test_scheduled_public_view(client, estate):
    _, token = await schedule_with_link(client, estate)

    response = await client.get(f"/api/public/scheduled/{token}")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["title"] == "Service the borehole pump"
    assert data["status"] == "scheduled"
    assert data["frequency_formatted"] == "Monthly"
    assert data["next_due_date"].startswith("2030-01-15")
    assert "id" not in data
    assert "priority" not in data


async def test_vendor_starts_scheduled_task_through_public_link(client, estate, session_factory):
    schedule_id, token = await schedule_with_link(client, estate)

    response = await client.post(
        f"/api/public/scheduled/{token}",
        json={"status": "in_progress", "commentMessage": "on site", "name": "Juma", "phone": VENDOR_PHONE},
    )
    assert response.status_code == 200, response.json()
    assert response.json()["data"]["status"] == "in_progress"

    async with session_factory() as db:
        started = (await db.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.SCHEDULED_MAINTENANCE_STARTED)
        )).scalar_one()
    assert started.resource_id == uuid.UUID(schedule_id)
    assert started.external_user_identifier == VENDOR_PHONE


async def test_disabled_scheduled_link_returns_not_found(client, estate):
    schedule_id, token = await schedule_with_link(client, estate)

    disabled = await client.delete(
        f"/api/scheduled-maintenance/{schedule_id}/public-link", headers=auth_headers(estate["manager"])
    )
    assert disabled.status_code == 200

    view = await client.get(f"/api/public/scheduled/{token}")
    update = await client.post(
        f"/api/public/scheduled/{token}",
        json={"status": "in_progress", "name": "Juma", "phone": VENDOR_PHONE},
    )
    for response in (view, update):
        assert response.status_code == 404
        assert response.json()["message"] == LINK_NOT_FOUND
