import pytest
import pytest_asyncio
from datetime import datetime, timezone
from httpx import AsyncClient, ASGITransport

from common.config import Settings
from common.database import db_manager
from common.models import Tenant, TenantStatus, User, UserRole
from oauth_service.app.main import create_app
from oauth_service.app.services.pkce import code_challenge_s256, generate_code_verifier

from oauth_service.tests.factories import FrozenClock, REDIRECT_URI, TEST_PASSWORD, TEST_SECRET


@pytest.fixture
def clock():
    return FrozenClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def settings(tmp_path):
    # File-backed SQLite so concurrent sessions get separate connections
    return Settings(
        jwt_secret_key=TEST_SECRET,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'oauth_test.db'}",
        bcrypt_rounds=4,
        rate_limit_enabled=False,
        cleanup_interval_seconds=0,
        environment="test",
        base_url=None,
    )


@pytest_asyncio.fixture
async def app(settings, clock):
    application = create_app(settings, clock=clock)
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def test_client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def service(app):
    return app.state.oauth_service


@pytest_asyncio.fixture
async def db_session(app):
    async with db_manager.async_session() as session:
        yield session


@pytest_asyncio.fixture
async def tenant(db_session):
    record = Tenant(name="Acme Sales", status=TenantStatus.ACTIVE)
    db_session.add(record)
    await db_session.commit()
    return record


@pytest_asyncio.fixture
async def test_user(db_session, tenant, service):
    user = User(
        tenant=tenant,
        email="Dana.Rep@acme.example",
        hashed_password=service.auth_manager.hash_password(TEST_PASSWORD),
        first_name="Dana",
        last_name="Rep",
        role=UserRole.USER,
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def oauth_client(db_session, service):
    from oauth_service.app.schemas.oauth import ClientRegistrationRequest

    return await service.register_client(db_session, ClientRegistrationRequest(
        client_name="Agent Desk",
        redirect_uris=[REDIRECT_URI],
        grant_types=["authorization_code", "refresh_token"],
    ))


@pytest.fixture
def pkce_pair():
    verifier = generate_code_verifier()
    return verifier, code_challenge_s256(verifier)
