"""
Vendor directory tests.
"""

from fixit.models.enums import GlobalRole
from tests.conftest import auth_headers


async def create_vendor(client, manager, prop, **overrides):
    body = {
        "name": "Sparky Electrical",
        "services": ["electrical"],
        "phone": "+256700222333",
        "contactPerson": "Okello",
        "associatedProperties": [str(prop.id)],
        **overrides,
    }
    return await client.post("/api/vendors", json=body, headers=auth_headers(manager))


async def test_manager_creates_and_lists_vendor(client, estate):
    created = await create_vendor(client, estate["manager"], estate["property"])
    assert created.status_code == 201
    vendor = created.json()["data"]
    assert vendor["property_ids"] == [str(estate["property"].id)]

    listed = await client.get("/api/vendors?service=electrical", headers=auth_headers(estate["manager"]))
    assert [v["name"] for v in listed.json()["data"]] == ["Sparky Electrical"]


async def test_vendor_cannot_be_linked_to_unmanaged_property(client, estate, make_property):
    other, _ = await make_property("Not Mine")
    response = await create_vendor(client, estate["manager"], other)
    assert response.status_code == 403


async def test_other_managers_do_not_see_vendor(client, estate, make_user):
    vendor_id = (await create_vendor(client, estate["manager"], estate["property"])).json()["data"]["id"]
    stranger = await make_user(GlobalRole.PROPERTY_MANAGER)

    response = await client.get(f"/api/vendors/{vendor_id}", headers=auth_headers(stranger))
    assert response.status_code == 404


async def test_tenant_cannot_use_vendor_directory(client, estate):
    response = await client.get("/api/vendors", headers=auth_headers(estate["tenant1"]))
    assert response.status_code == 403


async def test_deactivated_vendor_cannot_be_assigned(client, estate):
    headers = auth_headers(estate["manager"])
    vendor_id = (await create_vendor(client, estate["manager"], estate["property"])).json()["data"]["id"]
    removed = await client.delete(f"/api/vendors/{vendor_id}", headers=headers)
    assert removed.json()["data"]["status"] == "inactive"

    request_id = (await client.post(
        "/api/requests",
        json={"title": "Sockets sparking", "category": "electrical", "property": str(estate["property"].id)},
        headers=headers,
    )).json()["data"]["id"]
    response = await client.post(
        f"/api/requests/{request_id}/assign", json={"assignee": vendor_id, "kind": "Vendor"}, headers=headers
    )
    assert response.status_code == 400
