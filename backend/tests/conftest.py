"""
Shared test fixtures for the LaunchDesk backend test suite.

NOTE: This test suite uses aiosqlite as the async SQLite driver so that tests
run against an in-memory database instead of a real PostgreSQL instance.
Make sure ``aiosqlite`` is installed:

    pip install -e ".[test]"

Each test gets its own in-memory database. The SQLite connection is switched
to manual transaction control so ``SAVEPOINT`` works, which the name conflict
retries rely on.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import UUID as PG_UUID, JSONB
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.dependencies import get_meta_service, get_reconciliation_queue
from app.models.ad import Ad, AdCopyVariation, AdCreative, AdDestination, AdTargetLocation
from app.models.campaign import Campaign, MetaConnection
from app.models.user import User
from app.services.meta_client import MetaAPIError
from app.services.publish_orchestrator import preflight_cache
from app.services.rate_limit import InMemoryRateLimiter, get_rate_limiter
from app.utils.security import create_access_token

# Import all models so Base.metadata has every table registered.
import app.models  # noqa: F401


# ---------------------------------------------------------------------------
# Type-adaptation: teach SQLAlchemy to compile PG types for the SQLite dialect.
# ---------------------------------------------------------------------------

@compiles(PG_UUID, "sqlite")
def _compile_uuid_sqlite(type_, compiler, **kw):
    return "CHAR(32)"


@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


TEST_DATABASE_URL = "sqlite+aiosqlite://"


# ---------------------------------------------------------------------------
# Fakes for the outbound seams
# ---------------------------------------------------------------------------

class FakeMetaService:
    """Stands in for MetaAPIService. Tokens are "encrypted" with an ``enc:`` prefix."""

    def __init__(self):
        self.publish_calls: list[dict] = []
        self.status_calls: list[tuple[str, str, str]] = []
        self.verify_calls: list[tuple] = []
        self.publish_error: MetaAPIError | None = None
        self.publish_result = {
            "ad_id": "meta_ad_1",
            "ad_ids": ["meta_ad_1"],
            "status": "PENDING_REVIEW",
            "campaign_id": "meta_campaign_1",
            "adset_id": "meta_adset_1",
            "creative_id": "meta_creative_1",
        }

    def encrypt_token(self, token: str) -> str:
        return f"enc:{token}"

    def decrypt_token(self, encrypted: str) -> str:
        return encrypted.removeprefix("enc:")

    async def publish_ad(self, access_token, ad_account_id, publish_data, existing_campaign_id=None, existing_adset_id=None):
        self.publish_calls.append({
            "access_token": access_token,
            "ad_account_id": ad_account_id,
            "publish_data": publish_data,
            "existing_campaign_id": existing_campaign_id,
            "existing_adset_id": existing_adset_id,
        })
        if self.publish_error:
            raise self.publish_error
        return dict(self.publish_result)

    async def update_ad_status(self, access_token, ad_id, status):
        self.status_calls.append((access_token, ad_id, status))
        return {"success": True}

    async def verify_publish(self, access_token, campaign_id, adset_id, ad_ids):
        self.verify_calls.append((access_token, campaign_id, adset_id, list(ad_ids)))
        return {
            "success": True,
            "campaign_exists": True,
            "adset_exists": True,
            "all_ads_exist": True,
            "statuses": {campaign_id: "PAUSED", adset_id: "PAUSED", **{a: "PAUSED" for a in ad_ids}},
            "warnings": [],
            "errors": [],
        }


class RecordingQueue:
    """Collects reconciliation jobs instead of sending them to Celery."""

    def __init__(self):
        self.jobs: list[tuple] = []

    def enqueue(self, ad_id, meta_ad_id, status, meta_campaign_id=None, meta_adset_id=None):
        self.jobs.append((ad_id, meta_ad_id, status, meta_campaign_id, meta_adset_id))


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def engine_test():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        # Hand transaction control to SQLAlchemy so SAVEPOINT works
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def db_session(engine_test) -> AsyncGenerator[AsyncSession, None]:
    session = AsyncSession(bind=engine_test, expire_on_commit=False)
    try:
        yield session
    finally:
        await session.close()


@pytest.fixture(autouse=True)
def _clear_preflight_cache():
    preflight_cache.clear()
    yield
    preflight_cache.clear()


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def fake_meta() -> FakeMetaService:
    return FakeMetaService()


@pytest.fixture()
def reconciliation_queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture()
def rate_limiter() -> InMemoryRateLimiter:
    return InMemoryRateLimiter()


@pytest_asyncio.fixture()
async def client(
    db_session: AsyncSession,
    fake_meta: FakeMetaService,
    reconciliation_queue: RecordingQueue,
    rate_limiter: InMemoryRateLimiter,
) -> AsyncGenerator[AsyncClient, None]:
    """
    FastAPI test client that uses ``httpx.AsyncClient`` with ``ASGITransport``.
    The database, Meta client, reconciliation queue and rate limiter
    dependencies are overridden so every request shares the test session and
    never leaves the process.
    """
    from app.main import app, limiter

    limiter.reset()

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_meta_service] = lambda: fake_meta
    app.dependency_overrides[get_reconciliation_queue] = lambda: reconciliation_queue
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

async def _make_user(db: AsyncSession, email: str) -> User:
    user = User(id=uuid.uuid4(), email=email, full_name="Test User", is_active=True)
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture()
async def test_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "test@example.com")


@pytest_asyncio.fixture()
async def other_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "other@example.com")


def headers_for(user: User) -> dict[str, str]:
    token = create_access_token(data={"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_headers(test_user: User) -> dict[str, str]:
    """Return an ``Authorization: Bearer <token>`` header dict for the test user."""
    return headers_for(test_user)


# ---------------------------------------------------------------------------
# Campaign / ad builders
# ---------------------------------------------------------------------------

async def make_campaign(db: AsyncSession, user: User, name: str = "Spring Sale", **fields) -> Campaign:
    fields.setdefault("goal", "website-visits")
    fields.setdefault("daily_budget", 1500)
    campaign = Campaign(user_id=user.id, name=name, **fields)
    db.add(campaign)
    await db.commit()
    return campaign


@pytest_asyncio.fixture()
async def publishable_ad(db_session: AsyncSession, test_user: User) -> Ad:
    """
    A website-visits ad with everything preflight needs:
    a live connection with page, ad account and payment, copy, creative,
    an https destination, a $15.00 budget and one country.
    """
    campaign = await make_campaign(db_session, test_user)
    db_session.add(MetaConnection(
        campaign_id=campaign.id,
        user_id=test_user.id,
        access_token_encrypted="enc:user-token",
        token_expires_at=datetime.now(timezone.utc) + timedelta(days=60),
        selected_page_id="page_1",
        selected_ad_account_id="act_1",
        ad_account_currency_code="USD",
        ad_account_payment_connected=True,
    ))
    ad = Ad(campaign_id=campaign.id, name="Spring Sale - Ad 1", status="draft")
    db_session.add(ad)
    await db_session.flush()

    db_session.add(AdCopyVariation(
        ad_id=ad.id, headline="Spring deals are here", primary_text="Save 20% on patio furniture this week.",
    ))
    db_session.add(AdCreative(ad_id=ad.id, image_url="https://cdn.example.com/patio.jpg"))
    db_session.add(AdDestination(ad_id=ad.id, destination_type="website", website_url="https://shop.example.com"))
    db_session.add(AdTargetLocation(
        ad_id=ad.id, location_name="United States", location_type="country", location_key="US", country_code="US",
    ))
    await db_session.commit()
    return ad
