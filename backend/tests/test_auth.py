"""
Account tests: registration, verification, sign-in, passwords and tokens.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import select, update

from fixit.core.config import get_settings
from fixit.core.errors import AuthenticationError
from fixit.core.security import (
    JWT_ALGORITHM,
    create_access_token,
    decode_access_token,
    hash_password,
    hash_token,
    is_password_hash,
    verify_password,
)
from fixit.models.enums import GlobalRole, PropertyRole, RegistrationStatus
from fixit.models.jobs import JobsOutbox
from fixit.models.property import PropertyUser
from fixit.services.jobs import JOB_SEND_EMAIL
from tests.conftest import auth_headers

PASSWORD = "correct-horse-battery"


async def emailed_token(session_factory, to: str, path: str) -> str:
    """Pull the token out of the link queued for ``to``."""
    async with session_factory() as db:
        jobs = (await db.execute(select(JobsOutbox).where(JobsOutbox.type == JOB_SEND_EMAIL))).scalars().all()
    for job in jobs:
        if job.payload["to"] == to and f"/{path}/" in job.payload["text"]:
            return job.payload["text"].rsplit("/", 1)[-1]
    raise AssertionError(f"No {path} email queued for {to}")


# =============================================================================
# Password hashing and tokens
# =============================================================================

def test_password_hash_round_trip():
    hashed = hash_password(PASSWORD)
    assert hashed != PASSWORD
    assert is_password_hash(hashed)
    assert verify_password(PASSWORD, hashed)
    assert not verify_password("wrong-password", hashed)
    assert not verify_password(PASSWORD, None)


def test_token_hash_is_stable_sha256():
    assert hash_token("abc") == hash_token("abc")
    assert len(hash_token("abc")) == 64


def test_access_token_carries_subject_and_role():
    token = create_access_token("3f0c7b1e-0000-4000-8000-000000000001", GlobalRole.TENANT.value)
    claims = decode_access_token(token)
    assert claims["sub"] == "3f0c7b1e-0000-4000-8000-000000000001"
    assert claims["role"] == "tenant"


def test_expired_access_token_is_rejected():
    token = create_access_token("user", "tenant", now=datetime.now(timezone.utc) - timedelta(days=30))
    with pytest.raises(AuthenticationError):
        decode_access_token(token)


def test_token_signed_with_foreign_key_is_rejected():
    forged = jwt.encode(
        {"sub": "user", "role": "admin", "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        "someone-elses-signing-secret-of-decent-length",
        algorithm=JWT_ALGORITHM,
        headers={"kid": get_settings().jwt_key_id},
    )
    with pytest.raises(AuthenticationError):
        decode_access_token(forged)


# =============================================================================
# Registration and sign-in
# =============================================================================

async def test_register_verify_login(client, session_factory):
    email = "amina@example.com"
    registered = await client.post(
        "/api/auth/register",
        json={"email": email, "password": PASSWORD, "firstName": "Amina", "role": "tenant"},
    )
    assert registered.status_code == 201
    assert registered.json()["data"]["registration_status"] == "pending_email_verification"
    assert "password_hash" not in registered.json()["data"]

    blocked = await client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert blocked.status_code == 403

    token = await emailed_token(session_factory, email, "verify-email")
    verified = await client.post("/api/auth/verify-email", json={"token": token})
    assert verified.status_code == 200
    assert verified.json()["data"]["registration_status"] == "active"

    login = await client.post("/api/auth/login", json={"email": email.upper(), "password": PASSWORD})
    assert login.status_code == 200
    session = login.json()["data"]
    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {session['access_token']}"})
    assert me.json()["data"]["email"] == email


async def test_manager_registration_waits_for_admin(client, session_factory, make_user):
    email = "kato@example.com"
    await client.post(
        "/api/auth/register",
        json={"email": email, "password": PASSWORD, "role": "propertymanager"},
    )
    token = await emailed_token(session_factory, email, "verify-email")
    verified = await client.post("/api/auth/verify-email", json={"token": token})
    assert verified.json()["data"]["registration_status"] == "pending_admin_approval"

    pending = await client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert pending.status_code == 403

    admin = await make_user(GlobalRole.ADMIN)
    approved = await client.post(
        f"/api/users/{verified.json()['data']['id']}/approve", headers=auth_headers(admin)
    )
    assert approved.status_code == 200
    assert approved.json()["data"]["registration_status"] == "active"

    login = await client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert login.status_code == 200


async def test_manager_approves_pending_tenant_of_own_property(client, estate, make_user, make_property, grant, session_factory):
    pending = await make_user(GlobalRole.TENANT, status=RegistrationStatus.PENDING_INVITE_ACCEPTANCE)
    await grant(pending, estate["property"], [PropertyRole.TENANT], unit=estate["u2"])
    elsewhere, (far_unit,) = await make_property("Elsewhere", units=("Z1",))
    await grant(pending, elsewhere, [PropertyRole.TENANT], unit=far_unit)
    async with session_factory() as db:
        await db.execute(update(PropertyUser).where(PropertyUser.user_id == pending.id).values(is_active=False))
        await db.commit()

    approved = await client.post(f"/api/users/{pending.id}/approve", headers=auth_headers(estate["manager"]))
    assert approved.status_code == 200
    assert approved.json()["data"]["registration_status"] == "active"

    async with session_factory() as db:
        rows = (await db.execute(select(PropertyUser).where(PropertyUser.user_id == pending.id))).scalars().all()
    assert {r.property_id: r.is_active for r in rows} == {estate["property"].id: True, elsewhere.id: False}


async def test_manager_cannot_approve_outside_own_properties(client, estate, make_user, make_property, grant):
    pending = await make_user(GlobalRole.TENANT, status=RegistrationStatus.PENDING_ADMIN_APPROVAL)
    elsewhere, (far_unit,) = await make_property("Elsewhere", units=("Z1",))
    await grant(pending, elsewhere, [PropertyRole.TENANT], unit=far_unit)
    landlord = await make_user(GlobalRole.LANDLORD, status=RegistrationStatus.PENDING_ADMIN_APPROVAL)
    await grant(landlord, estate["property"], [PropertyRole.LANDLORD])

    for user in (pending, landlord):
        response = await client.post(f"/api/users/{user.id}/approve", headers=auth_headers(estate["manager"]))
        assert response.status_code == 403


async def test_admin_cannot_self_register(client):
    response = await client.post(
        "/api/auth/register", json={"email": "root@example.com", "password": PASSWORD, "role": "admin"}
    )
    assert response.status_code == 400


async def test_duplicate_email_conflicts(client, make_user):
    await make_user(email="taken@example.com", password=PASSWORD)
    response = await client.post("/api/auth/register", json={"email": "Taken@example.com", "password": PASSWORD})
    assert response.status_code == 409


async def test_short_password_is_a_validation_error(client):
    response = await client.post("/api/auth/register", json={"email": "x@example.com", "password": "short"})
    assert response.status_code == 400
    assert response.json()["success"] is False


async def test_wrong_password_is_unauthorized(client, make_user):
    user = await make_user(password=PASSWORD)
    response = await client.post("/api/auth/login", json={"email": user.email, "password": "not-the-password"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid credentials"


async def test_deactivated_user_token_stops_working(client, make_user):
    user = await make_user(status=RegistrationStatus.DEACTIVATED)
    response = await client.get("/api/auth/me", headers=auth_headers(user))
    assert response.status_code == 401


# =============================================================================
# Passwords
# =============================================================================

async def test_forgot_and_reset_password(client, session_factory, make_user):
    user = await make_user(password=PASSWORD)

    forgot = await client.post("/api/auth/forgot-password", json={"email": user.email})
    assert forgot.status_code == 200
    token = await emailed_token(session_factory, user.email, "reset-password")

    reset = await client.post("/api/auth/reset-password", json={"token": token, "password": "a-brand-new-secret"})
    assert reset.status_code == 200

    reused = await client.post("/api/auth/reset-password", json={"token": token, "password": "another-secret-1"})
    assert reused.status_code == 400

    login = await client.post("/api/auth/login", json={"email": user.email, "password": "a-brand-new-secret"})
    assert login.status_code == 200


async def test_forgot_password_for_unknown_email_still_succeeds(client):
    response = await client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
    assert response.status_code == 200


async def test_change_password_requires_current(client, make_user):
    user = await make_user(password=PASSWORD)
    response = await client.post(
        "/api/auth/change-password",
        json={"currentPassword": "guess", "newPassword": "whatever-else"},
        headers=auth_headers(user),
    )
    assert response.status_code == 401
