"""
In-app notification and generated document tests.
"""

from sqlalchemy import select

from fixit.models.enums import EntityKind
from fixit.models.media import Media
from tests.conftest import auth_headers


async def tenant_request(client, estate, title="Blocked drain") -> str:
    response = await client.post(
        "/api/requests",
        json={
            "title": title,
            "category": "plumbing",
            "property": str(estate["property"].id),
            "unit": str(estate["u1"].id),
        },
        headers=auth_headers(estate["tenant1"]),
    )
    assert response.status_code == 201
    return response.json()["data"]["id"]


# =============================================================================
# Notifications
# =============================================================================

async def test_manager_inbox_and_read_flow(client, estate):
    request_id = await tenant_request(client, estate)
    headers = auth_headers(estate["manager"])

    inbox = (await client.get("/api/notifications", headers=headers)).json()
    assert inbox["total"] == 1
    note = inbox["data"][0]
    assert note["kind"] == "new_request"
    assert note["related_kind"] == "request"
    assert note["related_id"] == request_id
    assert note["sender_id"] == str(estate["tenant1"].id)

    assert (await client.get("/api/notifications/unread-count", headers=headers)).json()["data"] == 1

    read = await client.post(f"/api/notifications/{note['id']}/read", headers=headers)
    assert read.json()["data"]["is_read"] is True
    assert (await client.get("/api/notifications/unread-count", headers=headers)).json()["data"] == 0


async def test_sender_is_not_notified_of_own_action(client, estate):
    await tenant_request(client, estate)
    inbox = (await client.get("/api/notifications", headers=auth_headers(estate["tenant1"]))).json()
    assert inbox["total"] == 0


async def test_comment_notifies_the_other_side(client, estate):
    request_id = await tenant_request(client, estate)
    await client.post(
        f"/api/requests/{request_id}/comments",
        json={"message": "We will send someone tomorrow"},
        headers=auth_headers(estate["manager"]),
    )

    inbox = (await client.get("/api/notifications", headers=auth_headers(estate["tenant1"]))).json()
    assert [n["kind"] for n in inbox["data"]] == ["new_comment"]


async def test_read_all(client, estate):
    await tenant_request(client, estate, "First issue")
    await tenant_request(client, estate, "Second issue")
    headers = auth_headers(estate["manager"])

    marked = await client.post("/api/notifications/read-all", headers=headers)
    assert marked.json()["data"] == 2

    unread = (await client.get("/api/notifications?unread=true", headers=headers)).json()
    assert unread["total"] == 0


async def test_cannot_touch_someone_elses_notification(client, estate):
    await tenant_request(client, estate)
    note = (await client.get("/api/notifications", headers=auth_headers(estate["manager"]))).json()["data"][0]

    stolen = await client.post(f"/api/notifications/{note['id']}/read", headers=auth_headers(estate["tenant2"]))
    assert stolen.status_code == 404


async def test_delete_notification(client, estate):
    await tenant_request(client, estate)
    headers = auth_headers(estate["manager"])
    note = (await client.get("/api/notifications", headers=headers)).json()["data"][0]

    deleted = await client.delete(f"/api/notifications/{note['id']}", headers=headers)
    assert deleted.status_code == 200
    assert (await client.get(f"/api/notifications/{note['id']}", headers=headers)).status_code == 404


# =============================================================================
# Generated documents
# =============================================================================

async def test_generate_maintenance_report(client, estate, storage, session_factory):
    request_id = await tenant_request(client, estate)

    response = await client.post(
        "/api/documents/generate",
        json={"type": "maintenance_report", "requestId": request_id},
        headers=auth_headers(estate["manager"]),
    )

    assert response.status_code == 201, response.json()
    document = response.json()["data"]
    assert document["mime_type"] == "application/pdf"
    assert document["filename"].startswith("maintenance-report-")
    assert "document" in document["tags"]

    async with session_factory() as db:
        rows = (await db.execute(select(Media).where(Media.owner_kind == EntityKind.REQUEST))).scalars().all()
    assert len(rows) == 1
    (blob,) = storage.objects.values()
    assert blob.startswith(b"%PDF")


async def test_tenant_cannot_generate_report(client, estate):
    request_id = await tenant_request(client, estate)
    response = await client.post(
        "/api/documents/generate",
        json={"requestId": request_id},
        headers=auth_headers(estate["tenant1"]),
    )
    assert response.status_code == 403
