"""
Fix It by Threalty - Shared Test Fixtures
Provides the app client, a throwaway database, an in-memory blob store
and factories for users, properties, grants and vendors.
"""

import os
import tempfile
import uuid
from pathlib import Path
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient

# Configure test environment BEFORE importing the app
_DB_FILE = Path(tempfile.mkdtemp(prefix="fixit-tests-")) / "fixit_test.db"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_FILE}"
os.environ["NODE_ENV"] = "test"
os.environ["JWT_SECRET"] = "test-secret-that-is-long-enough-for-hs256-signing"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["APP_TIMEZONE"] = "UTC"
os.environ["FRONTEND_URL"] = "http://app.test"

from fixit.core.database import Base, async_session_factory, engine
from fixit.core.security import create_access_token, hash_password
from fixit.main import app
from fixit.models.enums import GlobalRole, PropertyRole, RegistrationStatus, VendorStatus
from fixit.models.property import Property, PropertyUser, Unit
from fixit.models.user import User
from fixit.models.vendor import Vendor
from fixit.services.storage import MediaRegistry, StorageProviderInterface, get_media_registry

import fixit.models  # noqa: F401  registers every table on Base.metadata


class InMemoryStorageProvider(StorageProviderInterface):
    """Blob store kept in a dict, keyed by object path."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []

    async def put_object(self, object_path, data, mime_type, metadata):
        self.objects[object_path] = data
        return f"memory://{object_path}"

    async def generate_presigned_download_url(self, object_path, ttl_seconds, download_name=None):
        return f"memory://{object_path}?ttl={ttl_seconds}"

    async def delete_object(self, object_path):
        self.deleted.append(object_path)
        return self.objects.pop(object_path, None) is not None


# =============================================================================
# Core Fixtures
# =============================================================================

@pytest.fixture(scope="function", autouse=True)
async def setup_test_database():
    """Create database tables before each test and clean up after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def storage() -> InMemoryStorageProvider:
    return InMemoryStorageProvider()


@pytest.fixture
def registry(storage) -> MediaRegistry:
    return MediaRegistry(storage, timeout_seconds=5)


@pytest.fixture
async def client(registry) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with the blob store swapped for memory."""
    app.dependency_overrides[get_media_registry] = lambda: registry
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def session_factory():
    return async_session_factory


@pytest.fixture
async def db():
    async with async_session_factory() as session:
        yield session


# =============================================================================
# Factories
# =============================================================================

async def _persist(*rows):
    async with async_session_factory() as session:
        session.add_all(rows)
        await session.commit()
    return rows[0] if len(rows) == 1 else rows


@pytest.fixture
def make_user():
    async def factory(
        role: GlobalRole = GlobalRole.TENANT,
        email: Optional[str] = None,
        password: Optional[str] = None,
        status: RegistrationStatus = RegistrationStatus.ACTIVE,
        **fields,
    ) -> User:
        user = User(
            id=uuid.uuid4(),
            email=email or f"{role.value}-{uuid.uuid4().hex[:8]}@example.com",
            first_name=fields.pop("first_name", role.value.capitalize()),
            last_name=fields.pop("last_name", "Tester"),
            role=role,
            registration_status=status,
            is_email_verified=status == RegistrationStatus.ACTIVE,
            password_hash=hash_password(password) if password else None,
            **fields,
        )
        return await _persist(user)

    return factory


@pytest.fixture
def make_property():
    async def factory(name: str = "Kampala Heights", units: tuple[str, ...] = ("A1", "A2")):
        prop = Property(id=uuid.uuid4(), name=name, street="Plot 12 Kira Road", city="Kampala", country="Uganda")
        unit_rows = [Unit(id=uuid.uuid4(), property_id=prop.id, unit_name=u) for u in units]
        await _persist(prop, *unit_rows)
        return prop, unit_rows

    return factory


@pytest.fixture
def grant():
    async def factory(
        user: User,
        prop: Property,
        roles: list[PropertyRole],
        unit: Optional[Unit] = None,
    ) -> PropertyUser:
        row = PropertyUser(id=uuid.uuid4(), user_id=user.id, property_id=prop.id, unit_id=unit.id if unit else None)
        row.set_roles(roles)
        return await _persist(row)

    return factory


@pytest.fixture
def make_vendor():
    async def factory(name: str = "Quick Plumbers", phone: str = "+256700000001", email: Optional[str] = "jobs@quickplumbers.test"):
        vendor = Vendor(
            id=uuid.uuid4(),
            name=name,
            phone=phone,
            email=email,
            services=["plumbing"],
            status=VendorStatus.ACTIVE,
        )
        return await _persist(vendor)

    return factory


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role.value)}"}


@pytest.fixture
async def estate(make_user, make_property, grant, make_vendor):
    """A property with two units, a manager, one tenant per unit and a vendor."""
    prop, (u1, u2) = await make_property()
    manager = await make_user(GlobalRole.PROPERTY_MANAGER)
    tenant1 = await make_user(GlobalRole.TENANT)
    tenant2 = await make_user(GlobalRole.TENANT)
    await grant(manager, prop, [PropertyRole.PROPERTY_MANAGER])
    await grant(tenant1, prop, [PropertyRole.TENANT], unit=u1)
    await grant(tenant2, prop, [PropertyRole.TENANT], unit=u2)
    vendor = await make_vendor()
    return {
        "property": prop,
        "u1": u1,
        "u2": u2,
        "manager": manager,
        "tenant1": tenant1,
        "tenant2": tenant2,
        "vendor": vendor,
    }
