"""
Invitation tests: sending, previewing, accepting once and revoking.
"""

import uuid

from sqlalchemy import select

from fixit.core.security import hash_token
from fixit.models.audit import AuditLog
from fixit.models.enums import AuditAction, GlobalRole, InviteStatus, PropertyRole, RegistrationStatus
from fixit.models.invite import Invite
from fixit.models.jobs import JobsOutbox
from fixit.models.property import PropertyUser
from fixit.models.user import User
from fixit.services.jobs import JOB_SEND_EMAIL
from tests.conftest import auth_headers

INVITEE = "new.tenant@example.com"


async def send_invite(client, estate, email=INVITEE, roles=("tenant",), unit="u2", sender="manager"):
    payload = {
        "email": email,
        "property": str(estate["property"].id),
        "roles": list(roles),
    }
    if unit:
        payload["unit"] = str(estate[unit].id)
    return await client.post("/api/invites", json=payload, headers=auth_headers(estate[sender]))


def token_of(response) -> str:
    return response.json()["data"]["invite_link"].rsplit("/", 1)[-1]


# =============================================================================
# Sending
# =============================================================================

async def test_manager_invites_tenant_and_email_is_queued(client, estate, session_factory):
    response = await send_invite(client, estate)
    assert response.status_code == 201, response.json()
    data = response.json()["data"]
    assert data["status"] == "pending"
    assert data["invite_link"].startswith("http://app.test/accept-invite/")

    token = token_of(response)
    async with session_factory() as db:
        invite = await db.get(Invite, uuid.UUID(data["id"]))
        jobs = (await db.execute(select(JobsOutbox).where(JobsOutbox.type == JOB_SEND_EMAIL))).scalars().all()
        placeholder = (await db.execute(select(User).where(User.email == INVITEE))).scalar_one()

    # Only the hash is stored
    assert invite.token_hash == hash_token(token)
    assert invite.token_hash != token
    assert len(jobs) == 1
    assert jobs[0].payload["to"] == INVITEE
    assert token in jobs[0].payload["text"]
    assert placeholder.registration_status == RegistrationStatus.PENDING_INVITE_ACCEPTANCE
    assert placeholder.role == GlobalRole.TENANT


async def test_tenant_cannot_invite(client, estate):
    response = await send_invite(client, estate, email="friend@example.com", sender="tenant1", unit="u1")
    assert response.status_code == 403


async def test_tenant_invite_requires_unit(client, estate):
    response = await send_invite(client, estate, unit=None)
    assert response.status_code == 400


async def test_admin_access_role_is_not_invitable(client, estate):
    response = await send_invite(client, estate, roles=("admin_access",), unit=None)
    assert response.status_code == 400


async def test_duplicate_pending_invite_conflicts(client, estate):
    assert (await send_invite(client, estate)).status_code == 201
    assert (await send_invite(client, estate)).status_code == 409


async def test_existing_grant_holder_cannot_be_reinvited(client, estate):
    response = await send_invite(client, estate, email=estate["tenant2"].email)
    assert response.status_code == 409


# =============================================================================
# Accepting
# =============================================================================

async def test_preview_shows_property_and_roles(client, estate):
    token = token_of(await send_invite(client, estate))

    response = await client.get(f"/api/invites/verify/{token}")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["email"] == INVITEE
    assert data["roles"] == ["tenant"]
    assert data["property_name"] == estate["property"].name


async def test_accept_activates_account_and_grants_unit(client, estate, session_factory):
    token = token_of(await send_invite(client, estate))

    response = await client.post(
        "/api/invites/accept",
        json={"token": token, "password": "correct-horse", "firstName": "Nakato", "lastName": "Achieng"},
    )
    assert response.status_code == 200, response.json()
    data = response.json()["data"]
    assert data["access_token"]
    assert data["user"]["email"] == INVITEE

    async with session_factory() as db:
        user = (await db.execute(select(User).where(User.email == INVITEE))).scalar_one()
        grants = (await db.execute(select(PropertyUser).where(PropertyUser.user_id == user.id))).scalars().all()
        invite = (await db.execute(select(Invite).where(Invite.email == INVITEE))).scalar_one()
        audit = (
            await db.execute(select(AuditLog).where(AuditLog.action == AuditAction.INVITE_ACCEPTED))
        ).scalars().all()

    assert user.registration_status == RegistrationStatus.ACTIVE
    assert user.is_email_verified is True
    assert user.first_name == "Nakato"
    assert len(grants) == 1
    assert grants[0].is_active is True
    assert grants[0].unit_id == estate["u2"].id
    assert PropertyRole.TENANT in grants[0].role_set
    assert invite.status == InviteStatus.ACCEPTED
    assert invite.accepted_by_id == user.id
    assert len(audit) == 1

    # The new session works
    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert me.status_code == 200


async def test_token_is_single_use(client, estate):
    token = token_of(await send_invite(client, estate))
    body = {"token": token, "password": "correct-horse"}

    assert (await client.post("/api/invites/accept", json=body)).status_code == 200
    again = await client.post("/api/invites/accept", json=body)
    assert again.status_code == 404


async def test_short_password_is_rejected_and_invite_stays_pending(client, estate, session_factory):
    token = token_of(await send_invite(client, estate))

    response = await client.post("/api/invites/accept", json={"token": token, "password": "short"})
    assert response.status_code == 400
    async with session_factory() as db:
        invite = (await db.execute(select(Invite).where(Invite.email == INVITEE))).scalar_one()
    assert invite.status == InviteStatus.PENDING


async def test_existing_account_confirms_password(client, estate, make_user, session_factory):
    vendor_user = await make_user(GlobalRole.VENDOR, email="crew@fixers.test", password="crew-password")
    response = await send_invite(client, estate, email=vendor_user.email, roles=("vendor_access",), unit=None)
    assert response.status_code == 201
    token = token_of(response)

    wrong = await client.post("/api/invites/accept", json={"token": token, "password": "not-the-password"})
    assert wrong.status_code == 401

    right = await client.post("/api/invites/accept", json={"token": token, "password": "crew-password"})
    assert right.status_code == 200
    async with session_factory() as db:
        grant = (
            await db.execute(select(PropertyUser).where(PropertyUser.user_id == vendor_user.id))
        ).scalar_one()
    assert grant.role_set == frozenset({PropertyRole.VENDOR_ACCESS})


# =============================================================================
# Revoking and listing
# =============================================================================

async def test_revoked_invite_cannot_be_accepted(client, estate):
    sent = await send_invite(client, estate)
    token = token_of(sent)
    invite_id = sent.json()["data"]["id"]

    revoked = await client.delete(f"/api/invites/{invite_id}", headers=auth_headers(estate["manager"]))
    assert revoked.status_code == 200
    assert revoked.json()["data"]["status"] == "revoked"

    assert (await client.get(f"/api/invites/verify/{token}")).status_code == 404
    accept = await client.post("/api/invites/accept", json={"token": token, "password": "correct-horse"})
    assert accept.status_code == 404

    # Revoking twice is a state error
    again = await client.delete(f"/api/invites/{invite_id}", headers=auth_headers(estate["manager"]))
    assert again.status_code == 422


async def test_list_is_scoped_to_managed_properties(client, estate, make_user, make_property, grant):
    await send_invite(client, estate)
    outsider = await make_user(GlobalRole.PROPERTY_MANAGER)
    other, _ = await make_property(name="Elsewhere")
    await grant(outsider, other, [PropertyRole.PROPERTY_MANAGER])

    mine = await client.get("/api/invites", headers=auth_headers(estate["manager"]))
    assert [i["email"] for i in mine.json()["data"]] == [INVITEE]

    theirs = await client.get("/api/invites", headers=auth_headers(outsider))
    assert theirs.json()["data"] == []

    forbidden = await client.get(
        "/api/invites",
        params={"property_id": str(estate["property"].id)},
        headers=auth_headers(outsider),
    )
    assert forbidden.status_code == 403
