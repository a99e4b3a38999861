import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ["LOCK_BACKEND"] = "local"

from datetime import datetime

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from invest_backend.main import app
from invest_backend.core.database import Base
from invest_backend.core.security import create_access_token
from invest_backend.dependencies.get_db import get_db
from invest_backend.database_model.user import User
from invest_backend.database_model.product import Product
from invest_backend.database_model import purchase, transaction, recharge, withdrawal  # noqa: F401
from invest_backend.services.user_service import UserService
from invest_backend.services.catalog_service import CatalogService
from invest_backend.utils.lock_manager import LockManager, reset_lock_manager


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """A fresh SQLite database file per test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def lock_manager():
    """Per-test in-process lock registry."""
    manager = LockManager(backend="local")
    reset_lock_manager(manager)
    yield manager
    reset_lock_manager()


@pytest_asyncio.fixture
async def client(session_factory):
    """Create a test client; every request gets its own session."""
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user."""
    user_service = UserService(db_session)
    return await user_service.create_user(
        name="Test User",
        username="testuser",
        phone_number="9000000001",
        password="secret123"
    )


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    user_service = UserService(db_session)
    return await user_service.create_user(
        name="Other User",
        username="otheruser",
        phone_number="9000000002",
        password="secret456"
    )


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    """Create an admin test user."""
    user_service = UserService(db_session)
    return await user_service.create_user(
        name="Admin User",
        username="admin",
        phone_number="9999999999",
        password="admin123",
        is_admin=True,
        own_referral_code="ADMIN001"
    )


@pytest_asyncio.fixture
async def products(db_session: AsyncSession):
    """The default catalog, ordered by id."""
    catalog = CatalogService(db_session)
    await catalog.seed_default_products()
    return await catalog.list_products()


@pytest.fixture
def starter_product(products) -> Product:
    """Starter Plan: price 490, daily income 80, 9 days."""
    return products[0]


def make_token(user: User) -> str:
    return create_access_token(
        data={"sub": user.id, "phone_number": user.phone_number, "is_admin": user.is_admin}
    )


@pytest.fixture
def test_user_token(test_user: User):
    """Create an access token for test user."""
    return make_token(test_user)


@pytest.fixture
def admin_user_token(admin_user: User):
    """Create an access token for admin user."""
    return make_token(admin_user)


@pytest.fixture
def auth_headers(test_user_token: str):
    """Create authorization headers for test user."""
    return {"Authorization": f"Bearer {test_user_token}"}


@pytest.fixture
def admin_auth_headers(admin_user_token: str):
    """Create authorization headers for admin user."""
    return {"Authorization": f"Bearer {admin_user_token}"}


@pytest.fixture
def set_balances(db_session: AsyncSession):
    """Write balances directly, bypassing the ledger."""
    async def _set_balances(user: User, **balances) -> User:
        user = await db_session.get(User, user.id, populate_existing=True)
        for field, value in balances.items():
            setattr(user, field, value)
        await db_session.commit()
        return user
    return _set_balances


@pytest.fixture
def reload(db_session: AsyncSession):
    """Fetch a row as currently committed, ignoring the identity map."""
    async def _reload(model, pk):
        return await db_session.get(model, pk, populate_existing=True)
    return _reload


@pytest.fixture
def fixed_now():
    """A mid-month moment used by service tests that inject the clock."""
    return datetime(2024, 3, 10, 9, 30)
