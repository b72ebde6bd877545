import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="roombook-tests-")

# Settings are read at import time, so the environment is fixed before the app loads.
os.environ["DATABASE_URL"] = os.getenv("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{_DB_DIR}/roombook.db")
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["HOLD_DURATION_SECONDS"] = "300"
os.environ["RELEASE_PRIOR_HOLDS"] = "false"
os.environ["TIMEZONE"] = "Asia/Bangkok"
os.environ["SLOT_MINUTES"] = "30"
os.environ["DAY_START"] = "08:00"
os.environ["LAST_SLOT"] = "20:30"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert

from roombook.app.db.session import SessionLocal, engine
from roombook.app.db.tables import metadata, rooms
from roombook.app.main import app


ROOMS = [
    {"id": 1, "name": "Room 1", "capacity": 4, "has_projector": False, "location": "2nd Floor"},
    {"id": 2, "name": "Room 2", "capacity": 6, "has_projector": True, "location": "2nd Floor"},
    {"id": 3, "name": "Room 3", "capacity": 8, "has_projector": True, "location": "3rd Floor"},
]


@pytest_asyncio.fixture
async def prepared_db():
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)
        await conn.execute(insert(rooms), ROOMS)
    yield


@pytest_asyncio.fixture
async def session(prepared_db):
    async with SessionLocal() as db_session:
        yield db_session


@pytest_asyncio.fixture
async def client(prepared_db):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


class UnreachableSession:
    """Session stand-in whose database refuses every connection."""

    def begin(self):
        return self

    async def __aenter__(self):
        raise ConnectionRefusedError(111, "Connect call failed ('127.0.0.1', 5432)")

    async def __aexit__(self, *exc_info):
        return False

    async def execute(self, *args, **kwargs):
        raise ConnectionRefusedError(111, "Connect call failed ('127.0.0.1', 5432)")


@pytest.fixture
def unreachable_session():
    return UnreachableSession()
