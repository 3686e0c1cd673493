"""
Pytest fixtures for the shop backend.

Every test gets its own SQLite database file under ``tmp_path`` so state never
leaks between tests. Password hashing runs with few rounds to keep tests fast.
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from config import Settings
from database import create_engine, create_session_factory, init_models
from identifiers import public_id
from schemas import ProductIn, UserCreate
from security import CredentialHasher, TokenService
from services import ProductService, UserService

TEST_SECRET = "test-signing-secret"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}",
        secret_key=TEST_SECRET,
        password_hash_rounds=1000,
        log_level="WARNING",
    )


@pytest.fixture
def hasher(settings):
    return CredentialHasher.from_settings(settings)


@pytest.fixture
def tokens(settings):
    return TokenService.from_settings(settings)


# ============ Database fixtures ============

@pytest_asyncio.fixture
async def engine(settings):
    engine = create_engine(settings.database_url)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def user_service(session, hasher, tokens):
    return UserService(session, hasher, tokens)


@pytest.fixture
def make_user(session_factory, hasher, tokens):
    """Create a user in its own session; returns its public integer id."""

    async def _make_user(login="alice", email=None, password="s3cret-pass", wallet="0"):
        async with session_factory() as session:
            service = UserService(session, hasher, tokens)
            user = await service.create_user(
                UserCreate(
                    login=login,
                    password=password,
                    name=login.title(),
                    email=email or f"{login}@example.com",
                    wallet_usdt=Decimal(wallet),
                )
            )
            return public_id(user.id)

    return _make_user


@pytest.fixture
def make_product(session_factory):
    async def _make_product(name="Headset", cost="50.00", country="NL"):
        async with session_factory() as session:
            product = await ProductService(session).create(
                ProductIn(name=name, cost=Decimal(cost), quantity_stock=5, country=country)
            )
            return public_id(product.id)

    return _make_product


# ============ API fixtures ============

@pytest.fixture
def client(settings):
    from fastapi.testclient import TestClient

    from main import create_app

    with TestClient(create_app(settings)) as test_client:
        yield test_client
