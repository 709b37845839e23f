import os
import tempfile

# Point the app at a throwaway database before anything imports the engine
_DB_DIR = tempfile.mkdtemp(prefix="authz-core-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.setdefault("SESSION_SECRET", "test-session-secret")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
import ulid  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from app.core.database.base import Base  # noqa: E402
from app.core.database.engine import AsyncSessionLocal, engine, init_db  # noqa: E402
from app.features.organizations.models import Organization, user_organizations  # noqa: E402
from app.features.roles.service import create_for  # noqa: E402
from app.features.sessions.service import issue_session_token  # noqa: E402
from app.features.users.models import User  # noqa: E402
from app.main import app  # noqa: E402


@pytest_asyncio.fixture
async def db():
    await init_db()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def client(db):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def make_user(db):
    async def _make_user(name=None, email=None, is_active=True):
        user = User(
            email=email or f"{ulid.ulid().lower()}@example.com",
            name=name,
            is_active=is_active,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_organization(db):
    async def _make_organization(name="Test Org"):
        organization = Organization(name=name)
        db.add(organization)
        await db.commit()
        await db.refresh(organization)
        return organization

    return _make_organization


@pytest.fixture
def make_member(db, make_user):
    """Create a user who belongs to ``organization`` and holds ``role`` there."""
    async def _make_member(organization, role="member", name=None):
        user = await make_user(name=name)
        await db.execute(
            user_organizations.insert().values(user_id=user.id, organization_id=organization.id)
        )
        await db.commit()
        if role:
            await create_for(db, user, role, organization)
        return user

    return _make_member


@pytest.fixture
def auth_headers(db):
    async def _auth_headers(user, scope="user", organization=None):
        token = await issue_session_token(db, user, scope=scope)
        headers = {"Authorization": f"Bearer {token}"}
        if organization is not None:
            headers["X-Organization-ID"] = organization.id
        return headers

    return _auth_headers
