"""
Shared test fixtures — in-memory SQLite async database + FastAPI test client.

Strategy:
1. Set DATABASE_URL to SQLite before anything loads
2. One shared in-memory connection (StaticPool) so the importer's per-batch
   sessions and the test's own session see the same data
3. Routers get the test session / session factory via dependency overrides
"""
import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# ── 1. Environment ──
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["DEBUG"] = "false"

# ── 2. Test engine (SQLite in-memory) ──
TEST_ENGINE = create_async_engine(
    "sqlite+aiosqlite://",
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSession = async_sessionmaker(
    TEST_ENGINE,
    class_=AsyncSession,
    expire_on_commit=False,
)

# ── 3. Import the app and point its dependencies at the test engine ──
from compliance_engine.database import get_session, get_session_factory  # noqa: E402
from compliance_engine.main import app as fastapi_app  # noqa: E402
from compliance_engine.models import (  # noqa: E402
    Base,
    Finding,
    Group,
    Package,
    System,
)


async def _test_get_session() -> AsyncGenerator[AsyncSession, None]:
    async with TestSession() as session:
        yield session


def _test_get_session_factory() -> async_sessionmaker[AsyncSession]:
    return TestSession


fastapi_app.dependency_overrides[get_session] = _test_get_session
fastapi_app.dependency_overrides[get_session_factory] = _test_get_session_factory


# ── Sample catalog ──

CATALOG = {
    "AC-1": {
        "name": "Policy and Procedures",
        "controlText": "Develop, document, and disseminate an access control policy.",
        "relatedControls": ["PM-9", "AC-2"],
        "ccis": [{"cci": "CCI-000001", "definition": "Develop an access control policy."}],
    },
    "AC-2": {
        "name": "Account Management",
        "controlText": "Define and document the types of accounts allowed.",
        "discussion": "Examples of system account types include individual, shared and guest.",
        "relatedControls": ["AC-1", "AC-2 (1)"],
        "ccis": [
            {"cci": "CCI-000007", "definition": "Define the types of accounts."},
            {"cci": "CCI-002110", "definition": "Define the information system account types."},
        ],
    },
    "AC-2 (1)": {
        "name": "Automated System Account Management",
        "controlText": "Support the management of system accounts using automated mechanisms.",
        "relatedControls": ["AC-2"],
        "ccis": [
            {"cci": "CCI-000015", "definition": "Employ automated mechanisms."},
            {"cci": "CCI-002110", "definition": "Shared with AC-2."},
        ],
    },
    "AU-2": {
        "name": "Event Logging",
        "controlText": "Identify the types of events that the system is capable of logging.",
        "ccis": [{"cci": "CCI-000123", "definition": "Define auditable events."}],
    },
    "SC-7": {
        "name": "Boundary Protection",
        "controlText": "Monitor and control communications at the external managed interfaces.",
        "relatedControls": ["AC-4"],
    },
}


# ── Fixtures ──

@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Create all tables before each test, drop after."""
    async with TEST_ENGINE.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with TEST_ENGINE.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSession() as session:
        yield session


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    return TestSession


# ── Seed data helpers ──

@pytest_asyncio.fixture
async def seed_catalog():
    from compliance_engine.services.catalog_import import import_catalog

    return await import_catalog(TestSession, CATALOG, batch_size=2)


@pytest_asyncio.fixture
async def seed_package(db: AsyncSession):
    """Package with two groups: Servers (2 systems) and Workstations (1 system), plus one ungrouped system."""
    pkg = Package(name="Enterprise Network")
    db.add(pkg)
    await db.flush()

    servers = Group(package_id=pkg.id, name="Servers")
    workstations = Group(package_id=pkg.id, name="Workstations")
    db.add_all([servers, workstations])
    await db.flush()

    web = System(package_id=pkg.id, group_id=servers.id, name="web-01")
    dbs = System(package_id=pkg.id, group_id=servers.id, name="db-01")
    ws = System(package_id=pkg.id, group_id=workstations.id, name="ws-01")
    lab = System(package_id=pkg.id, group_id=None, name="lab-01")
    db.add_all([web, dbs, ws, lab])
    await db.commit()
    return {
        "package": pkg.id,
        "servers": servers.id,
        "workstations": workstations.id,
        "web": web.id,
        "db": dbs.id,
        "ws": ws.id,
        "lab": lab.id,
    }


async def add_findings(db: AsyncSession, system_id: int, *findings: dict) -> list[int]:
    rows = [Finding(system_id=system_id, **f) for f in findings]
    db.add_all(rows)
    await db.commit()
    return [r.id for r in rows]
