"""Pytest configuration for media vault tests."""
import asyncio
import io
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

# Set test environment variables BEFORE importing app modules
_scratch = Path(tempfile.mkdtemp(prefix="mediavault-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_scratch / 'ledger.db'}"
os.environ["UPLOAD_DIR"] = str(_scratch / "default-uploads")
os.environ["ADMIN_KEY"] = "test-admin-key"
os.environ["LISTING_MODE"] = "ledger"

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from mediavault.database import engine  # noqa: E402
from mediavault.dependencies import get_storage_root  # noqa: E402
from mediavault.main import app  # noqa: E402
from mediavault.models import Base, StoredFile  # noqa: E402
from mediavault.services.ledger import MetadataLedger  # noqa: E402
from mediavault.services.storage import StorageRoot  # noqa: E402

ADMIN_HEADERS = {"x-admin-key": "test-admin-key"}
BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_record(stored_name: str, size: int = 10, minutes: int = 0, **fields) -> StoredFile:
    """Ledger row with a fixed, controllable created_at."""
    return StoredFile(
        original_name=fields.pop("original_name", stored_name),
        stored_name=stored_name,
        mime_type=fields.pop("mime_type", "video/mp4"),
        size_bytes=size,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        **fields,
    )


class FakeUpload:
    """Minimal stand-in for fastapi.UploadFile."""

    def __init__(self, data: bytes, filename: str = "clip.mp4", content_type: str = "video/mp4"):
        self._buffer = io.BytesIO(data)
        self.filename = filename
        self.content_type = content_type
        self.reads = 0

    async def read(self, size: int = -1) -> bytes:
        self.reads += 1
        return self._buffer.read(size)


class FailingUpload(FakeUpload):
    """Raises after handing out its first chunk, like a client that disconnects."""

    async def read(self, size: int = -1) -> bytes:
        if self.reads:
            raise ConnectionResetError("client went away")
        return await super().read(size)


async def _reset_database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()


@pytest.fixture
def admin_headers():
    return dict(ADMIN_HEADERS)


@pytest.fixture
def storage_root(tmp_path):
    return StorageRoot(tmp_path / "uploads")


@pytest.fixture
def client(storage_root):
    """TestClient on a clean ledger and an empty storage root."""
    asyncio.run(_reset_database())
    app.dependency_overrides[get_storage_root] = lambda: storage_root
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def db_session(tmp_path):
    """Standalone session on its own SQLite file, for service-level tests."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'service.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await test_engine.dispose()


@pytest.fixture
def ledger(db_session):
    return MetadataLedger(db_session)
