"""
Property, unit and roster tests.
"""

from fixit.models.enums import GlobalRole
from tests.conftest import auth_headers


async def test_landlord_creates_property_and_joins_roster(client, make_user):
    landlord = await make_user(GlobalRole.LANDLORD)
    headers = auth_headers(landlord)

    created = await client.post(
        "/api/properties",
        json={"name": "Ntinda Court", "type": "residential", "city": "Kampala"},
        headers=headers,
    )
    assert created.status_code == 201
    property_id = created.json()["data"]["id"]

    roster = (await client.get(f"/api/properties/{property_id}/users", headers=headers)).json()["data"]
    assert [(r["user_id"], r["roles"]) for r in roster] == [(str(landlord.id), ["landlord"])]


async def test_tenant_cannot_create_property(client, make_user):
    tenant = await make_user(GlobalRole.TENANT)
    response = await client.post("/api/properties", json={"name": "Nope Towers"}, headers=auth_headers(tenant))
    assert response.status_code == 403


async def test_units_are_scoped_to_property(client, estate, make_property):
    headers = auth_headers(estate["manager"])
    prop_id = estate["property"].id

    created = await client.post(f"/api/properties/{prop_id}/units", json={"name": "B7"}, headers=headers)
    assert created.status_code == 201

    units = (await client.get(f"/api/properties/{prop_id}/units", headers=headers)).json()["data"]
    assert sorted(u["unit_name"] for u in units) == ["A1", "A2", "B7"]

    _, (foreign,) = await make_property("Elsewhere", units=("Z1",))
    missing = await client.get(f"/api/properties/{prop_id}/units/{foreign.id}", headers=headers)
    assert missing.status_code == 404


async def test_unit_count_on_property(client, estate):
    response = await client.get(f"/api/properties/{estate['property'].id}", headers=auth_headers(estate["manager"]))
    assert response.json()["data"]["unit_count"] == 2


async def test_tenant_grant_requires_unit(client, estate, make_user):
    newcomer = await make_user(GlobalRole.TENANT)
    response = await client.post(
        f"/api/properties/{estate['property'].id}/users",
        json={"userId": str(newcomer.id), "roles": ["tenant"]},
        headers=auth_headers(estate["manager"]),
    )
    assert response.status_code == 400


async def test_removed_tenant_loses_access(client, estate, make_user):
    headers = auth_headers(estate["manager"])
    prop_id = estate["property"].id
    newcomer = await make_user(GlobalRole.TENANT)

    granted = await client.post(
        f"/api/properties/{prop_id}/users",
        json={"userId": str(newcomer.id), "unitId": str(estate["u2"].id), "roles": ["tenant"]},
        headers=headers,
    )
    assert granted.status_code == 201

    request = await client.post(
        "/api/requests",
        json={"title": "Door lock jammed", "category": "security", "property": str(prop_id), "unit": str(estate["u2"].id)},
        headers=auth_headers(newcomer),
    )
    assert request.status_code == 201

    removed = await client.delete(
        f"/api/properties/{prop_id}/users/{granted.json()['data']['id']}", headers=headers
    )
    assert removed.status_code == 200
    assert removed.json()["data"]["is_active"] is False

    denied = await client.post(
        "/api/requests",
        json={"title": "Window latch broken", "category": "security", "property": str(prop_id), "unit": str(estate["u2"].id)},
        headers=auth_headers(newcomer),
    )
    assert denied.status_code == 403


async def test_tenant_cannot_view_roster(client, estate):
    response = await client.get(
        f"/api/properties/{estate['property'].id}/users", headers=auth_headers(estate["tenant1"])
    )
    assert response.status_code == 403
