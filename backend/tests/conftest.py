"""
FileHub test suite - shared fixtures.

Run:  pytest backend/tests -v

Each test gets its own sqlite database file and blob directory under
tmp_path, so nothing touches a real Postgres or the configured storage path.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("JWT_SECRET", "filehub-test-secret-0123456789abcdef")
os.environ["TRUST_IDENTITY_HEADERS"] = "false"

import httpx
import jwt
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from filehub.config import settings
from filehub.models import Base, FileRecord
from filehub.services.access import Principal, Role
from filehub.services.catalog import MetadataCatalog
from filehub.services.content_store import ContentStore
from filehub.services.policy_config import save_policy_values


class CountingContentStore(ContentStore):
    """Content store that records every physical blob write."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.writes = 0

    async def _write_blob(self, path, data):
        self.writes += 1
        return await super()._write_blob(path, data)


async def aiter_bytes(*chunks):
    for chunk in chunks:
        yield chunk


def make_token(user_id, role="user", secret=None, **claims):
    payload = {"id": user_id, "role": role, **claims}
    return jwt.encode(payload, secret or settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def headers_for(user_id, role="user"):
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


ALICE = Principal(id="alice", role=Role.USER)
BOB = Principal(id="bob", role=Role.USER)
ADMIN = Principal(id="root", role=Role.ADMIN)
SUPER = Principal(id="boss", role=Role.SUPER_ADMIN)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'filehub.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(tmp_path):
    return CountingContentStore(tmp_path / "blobs")


@pytest.fixture
def catalog(db):
    return MetadataCatalog(db)


@pytest.fixture
def make_record(catalog, store):
    """Store bytes and insert a record for them, bypassing the upload checks."""

    async def _make(filename="a.txt", data=b"hello", owner_id=None,
                    visibility="public", tags=(), store_blob=True):
        content_id = store.compute_id(data)
        if store_blob:
            await store.put(data)
        record = FileRecord(
            content_id=content_id,
            filename=filename,
            mime_type="text/plain",
            size_bytes=len(data),
            owner_id=owner_id,
            visibility=visibility,
            tags=",".join(tags),
        )
        return await catalog.insert(record)

    return _make


@pytest.fixture
def set_policy(db):
    async def _set(**values):
        return await save_policy_values(db, values)

    return _set


@pytest_asyncio.fixture
async def client(session_factory, store):
    from filehub.database import get_db
    from filehub.deps import get_content_store
    from filehub.main import app

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_content_store] = lambda: store
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
