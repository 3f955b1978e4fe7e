"""
CodeSafe Backend — Test Configuration (conftest.py)
=====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Environment variables are set before anything from `codesafe` is
       imported, so settings, engine and gateways are built for tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── db_engine / db_session: in-memory SQLite with the real schema
    ├── mock_db_session: AsyncMock session for failure injection
    ├── pin_store: PinVerificationStore over a plain dict
    ├── fake_gateway: AsyncMock StorageGateway
    ├── attachment_service: AttachmentService over fake_gateway, zero backoff
    ├── temp_storage: temporary directory for the local gateway
    └── test_client: HTTPX AsyncClient with db and storage overridden
"""

import os
import tempfile
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

# ══════════════════════════════════════════════════════════════════════════
# Environment Setup (before any codesafe import)
# ══════════════════════════════════════════════════════════════════════════

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="codesafe_test_")
os.environ["SESSION_SECRET_KEY"] = "test-session-secret"
os.environ["PIN_ENCRYPTION_KEY"] = "test-pin-key"
os.environ["COMPENSATION_MIN_WAIT"] = "0"
os.environ["COMPENSATION_MAX_WAIT"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from codesafe.database import Base, enable_sqlite_foreign_keys, get_db_session  # noqa: E402
from codesafe.models import note as _models  # noqa: E402,F401
from codesafe.services.attachment_service import (  # noqa: E402
    AttachmentService,
    get_attachment_service,
)
from codesafe.services.file_rules import DEFAULT_FILE_RULES  # noqa: E402
from codesafe.services.note_access import PinVerificationStore  # noqa: E402
from codesafe.services.storage_base import StorageGateway, StoredObject  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Database Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def db_engine():
    """One in-memory database per test, foreign keys enforced."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_db_session():
    """
    Provides a mock async database session.

    Usage:
        mock_db_session.flush.side_effect = OperationalError(...)
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.delete = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


# ══════════════════════════════════════════════════════════════════════════
# Service Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def session_data():
    """The dict a PinVerificationStore writes into, standing in for request.session."""
    return {}


@pytest.fixture
def pin_store(session_data):
    return PinVerificationStore(session_data)


@pytest.fixture
def fake_gateway():
    """
    AsyncMock gateway that "stores" everything it is given.

    upload() returns a StoredObject named after the file; delete() and
    delete_folder() succeed unless a test sets a side effect.
    """
    gateway = AsyncMock(spec=StorageGateway)
    gateway.name = "fake"

    async def _upload(content, category, organizing_key, filename):
        object_id = f"codesafe/test/{category}/{filename}"
        return StoredObject(
            url=f"https://files.example.test/{object_id}",
            object_id=object_id,
            name=filename,
            resource_type="raw",
        )

    gateway.upload.side_effect = _upload
    gateway.delete.return_value = True
    gateway.delete_folder.return_value = True
    gateway.health_check.return_value = True
    return gateway


@pytest.fixture
def attachment_service(fake_gateway):
    return AttachmentService(
        gateway=fake_gateway,
        rules=DEFAULT_FILE_RULES,
        compensation_attempts=3,
        compensation_min_wait=0,
        compensation_max_wait=0,
    )


@pytest.fixture
def temp_storage(tmp_path):
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir()
    return str(storage_dir)


@pytest.fixture
def sample_pdf_bytes():
    return b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\ntrailer\n<<>>\n%%EOF\n"


@pytest.fixture
def sample_png_bytes():
    """A 1x1 PNG: signature plus IHDR, enough for libmagic to say image/png."""
    return (
        b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01"
        b"\x08\x02\x00\x00\x00\x90wS\xde"
    )


# ══════════════════════════════════════════════════════════════════════════
# HTTP Client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(session_factory, attachment_service):
    """
    HTTPX AsyncClient talking to a fresh app.

    get_db_session is replaced by a session on the test database with the
    same commit/rollback behaviour; attachments go to fake_gateway. Cookies
    persist across requests, so PIN verification carries over like in a
    browser.
    """
    from codesafe.main import create_app

    app = create_app()

    async def _db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _db_session
    app.dependency_overrides[get_attachment_service] = lambda: attachment_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
