"""Pytest configuration and fixtures for FieldCash tests.

Tests run against an in-memory SQLite database (aiosqlite) with every
PublicBase and TenantBase table created in it, so no PostgreSQL is
needed.  The app's session dependencies are overridden to hand out the
test session.  Redis points at a closed port unless a test asks for the
`redis_client` fixture, so cached functions run uncached by default.
"""

import os

os.environ.setdefault("REDIS_URL", "redis://127.0.0.1:1/0")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DEBUG", "false")

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.jwt import create_access_token
from app.auth.permissions import resolve_permissions
from app.collection.assignment import AssignmentStateMachine
from app.collection.deposit import ProofAttachment
from app.database import PublicBase, TenantBase, get_db, get_tenant_db
from app.main import app
from app.models.public.tenant import Tenant
from app.models.public.user import User, UserRole
from app.models.tenant.client import Client
from app.models.tenant.collector_assignment import CollectorAssignment
from app.models.tenant.invoice import Invoice
from app.models.tenant.service_package import ServicePackage
from app.services.collection import collect_payment
from app.services.deposits import submit_collector_deposit
from app.services.storage import get_proof_storage
from app.utils import cache

TEST_SCHEMA = "tenant_test123"


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    """Fresh in-memory database per test, with SAVEPOINT support."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; take it over
    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(PublicBase.metadata.create_all)
        await conn.run_sync(TenantBase.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session


class MemoryProofStorage:
    """Keeps uploaded proofs in a dict instead of on disk."""

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.saved = 0

    async def save(self, folder: str, proof: ProofAttachment) -> str:
        self.saved += 1
        url = f"/uploads/deposits/{folder}/{self.saved}-{proof.filename}"
        self.files[url] = proof.data
        return url

    async def delete(self, url: str) -> None:
        self.files.pop(url, None)


@pytest.fixture
def proof_storage() -> MemoryProofStorage:
    return MemoryProofStorage()


@pytest_asyncio.fixture
async def client(db_session, proof_storage) -> AsyncGenerator[AsyncClient, None]:
    """Test client with database and storage dependencies overridden."""

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_tenant_db] = override_get_db
    app.dependency_overrides[get_proof_storage] = lambda: proof_storage

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _reset_redis_client():
    """Each test gets its own event loop, so never reuse a Redis client."""
    cache._redis_client = None
    yield
    cache._redis_client = None


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest_asyncio.fixture
async def tenant(db_session: AsyncSession) -> Tenant:
    tenant = Tenant(name="Test ISP", tenant_schema=TEST_SCHEMA, currency="IDR")
    db_session.add(tenant)
    await db_session.commit()
    return tenant


async def _make_user(db: AsyncSession, tenant: Tenant, role: UserRole, name: str) -> User:
    user = User(
        email=f"{name}@example.com",
        full_name=name.title(),
        role=role,
        is_active=True,
        tenant_id=tenant.id,
    )
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def collector_user(db_session, tenant) -> User:
    return await _make_user(db_session, tenant, UserRole.COLLECTOR, "collector")


@pytest_asyncio.fixture
async def other_collector(db_session, tenant) -> User:
    return await _make_user(db_session, tenant, UserRole.COLLECTOR, "othercollector")


@pytest_asyncio.fixture
async def finance_user(db_session, tenant) -> User:
    return await _make_user(db_session, tenant, UserRole.FINANCE, "finance")


@pytest_asyncio.fixture
async def admin_user(db_session, tenant) -> User:
    return await _make_user(db_session, tenant, UserRole.ADMINISTRATOR, "admin")


def make_headers(user: User, schema: str = TEST_SCHEMA) -> dict:
    token = create_access_token(
        user_id=user.id,
        role=user.role.value,
        permissions=resolve_permissions(user.role.value, user.custom_permissions),
        tenant_schema=schema,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def collector_headers(collector_user) -> dict:
    return make_headers(collector_user)


@pytest.fixture
def other_collector_headers(other_collector) -> dict:
    return make_headers(other_collector)


@pytest.fixture
def finance_headers(finance_user) -> dict:
    return make_headers(finance_user)


@pytest.fixture
def admin_headers(admin_user) -> dict:
    return make_headers(admin_user)


@pytest_asyncio.fixture
async def billing(db_session, tenant) -> dict:
    """Two clients with one pending invoice each.

    A: flat package 150,000, no discount        → due 150,000
    B: flat package 250,000, fixed 50,000 off   → due 200,000
    """
    basic = ServicePackage(
        name="Basic 10 Mbps", pricing_model="flat",
        price_monthly=Decimal("150000"), currency="IDR",
    )
    family = ServicePackage(
        name="Family 30 Mbps", pricing_model="flat",
        price_monthly=Decimal("250000"), currency="IDR",
    )
    db_session.add_all([basic, family])
    await db_session.flush()

    client_a = Client(
        name="Client A", address="Jl. Mawar 1",
        service_package_id=basic.id, device_count=1,
    )
    client_b = Client(
        name="Client B", address="Jl. Melati 2",
        service_package_id=family.id, device_count=1,
        discount_type="fixed", discount_value=Decimal("50000"),
    )
    db_session.add_all([client_a, client_b])
    await db_session.flush()

    due = date.today() + timedelta(days=7)
    invoice_a = Invoice(
        invoice_number="INV-A-001", client_id=client_a.id,
        total_amount=Decimal("150000"), paid_amount=Decimal("0"),
        due_date=due, status="pending",
    )
    invoice_b = Invoice(
        invoice_number="INV-B-001", client_id=client_b.id,
        total_amount=Decimal("200000"), paid_amount=Decimal("0"),
        due_date=due, status="pending",
    )
    db_session.add_all([invoice_a, invoice_b])
    await db_session.commit()

    return {
        "basic": basic, "family": family,
        "client_a": client_a, "client_b": client_b,
        "invoice_a": invoice_a, "invoice_b": invoice_b,
    }


@pytest_asyncio.fixture
async def assignments(db_session, billing, collector_user) -> dict:
    """Both invoices assigned to `collector_user`."""
    result = {}
    for key in ("a", "b"):
        invoice = billing[f"invoice_{key}"]
        assignment = CollectorAssignment(
            invoice_id=invoice.id,
            client_id=invoice.client_id,
            collector_id=collector_user.id,
            workflow_status="assigned",
            assigned_at=datetime.utcnow(),
        )
        db_session.add(assignment)
        result[key] = assignment
    await db_session.commit()
    return result


SLIP = ProofAttachment("slip.jpg", "image/jpeg", b"\xff\xd8\xff\xe0 bank slip")


@pytest_asyncio.fixture
async def deposited(db_session, assignments, collector_user, proof_storage) -> dict:
    """An unconfirmed deposit built through the services.

    A pays in full (150,000); B pays 50,000 of 200,000.
    """
    machine = AssignmentStateMachine(require_visit_photo=False)
    for assignment in assignments.values():
        machine.mark_visit_success(assignment, "Met the client")
    await db_session.flush()

    await collect_payment(db_session, collector_user, assignments["a"], "full")
    await collect_payment(db_session, collector_user, assignments["b"], "partial", "50000")

    result = await submit_collector_deposit(
        db_session, collector_user, proof_storage,
        work_date=datetime.utcnow().date(), proof=SLIP,
    )
    batch = result.unwrap()
    await db_session.commit()
    return {"batch": batch, **assignments}

# ── Redis Fixtures ───────────────────────────────────────────────

@pytest_asyncio.fixture
async def redis_client():
    """Real Redis for cache tests; skipped when none is reachable.

    Uses TEST_REDIS_URL (default: local Redis, database 15) and installs
    the client as the app's cache connection.
    """
    import redis.asyncio as redis

    client = redis.from_url(
        os.environ.get("TEST_REDIS_URL", "redis://localhost:6379/15"),
        decode_responses=True,
        socket_connect_timeout=1,
    )
    try:
        await client.ping()
    except redis.RedisError:
        await client.aclose()
        pytest.skip("Redis not available")

    await client.flushdb()
    cache._redis_client = client

    yield client

    # Cleanup: flush test database
    await client.flushdb()
    await client.aclose()
    cache._redis_client = None


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API endpoint tests")
    config.addinivalue_line("markers", "cache: Tests that exercise the Redis cache")
    config.addinivalue_line("markers", "slow: Slow tests")
