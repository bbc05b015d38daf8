import os

# Settings are read at import time, so the environment is prepared first
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-health-records-0123456789")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_health_records.db")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DB_AUTO_CREATE", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_DIR", "./test_logs")

import uuid  # noqa: E402
import pytest  # noqa: E402
from typing import AsyncGenerator, Dict, List, Optional  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402
from app.database import Base, get_db  # noqa: E402
from app.external.narrative_analysis_gateway import Insight, NarrativeAnalysis  # noqa: E402
from app.external.storage_gateway import StorageGatewayError, UploadResult, extension_for  # noqa: E402
from app.external.text_extraction_gateway import OcrResult  # noqa: E402
import app.models  # noqa: E402,F401

# Test database URL
TEST_DATABASE_URL = os.environ["DATABASE_URL"]

# Create test engine
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=NullPool,
    connect_args={"check_same_thread": False},
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

PNG_BYTES = (
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x06\x00\x00\x00\x1f\x15\xc4\x89"
    b"\x00\x00\x00\rIDATx\x9cc\xf8\xff\xff?\x00\x05\xfe\x02\xfe\xa7\x35\x81\x84\x00\x00\x00\x00IEND\xaeB`\x82"
)


class FakeStorageGateway:
    """In-memory stand-in for the object store."""

    base_url = "https://storage.test/health-records-documents"

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.fail_upload = False
        self.fail_delete = False

    async def upload(self, data: bytes, mime_type: str, owner_id: str) -> UploadResult:
        if self.fail_upload:
            raise StorageGatewayError("Failed to upload document: bucket unavailable")
        object_id = uuid.uuid4()
        file_url = f"{self.base_url}/{owner_id}/{object_id}{extension_for(mime_type)}"
        self.objects[file_url] = data

        thumbnail_url = None
        if mime_type.startswith("image/"):
            thumbnail_url = f"{self.base_url}/{owner_id}/thumbnails/{object_id}_thumb.jpg"
            self.objects[thumbnail_url] = b"thumbnail"
        return UploadResult(file_url=file_url, thumbnail_url=thumbnail_url, file_size=len(data))

    async def delete_document(self, url: str) -> None:
        if self.fail_delete:
            raise StorageGatewayError("Failed to delete document: access denied")
        self.objects.pop(url, None)
        self.deleted.append(url)

    async def delete_thumbnail(self, url: str) -> None:
        self.objects.pop(url, None)
        self.deleted.append(url)


class FakeTextExtractionGateway:
    def __init__(self, result: Optional[OcrResult] = None, errors: Optional[list] = None):
        self.result = result or OcrResult(text="Hemoglobin 13.5 g/dL", confidence=94.5, language="en")
        self.errors = list(errors or [])
        self.calls = 0

    async def extract_text(self, data: bytes, mime_type: str) -> OcrResult:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class FakeNarrativeAnalysisGateway:
    def __init__(self, result: Optional[NarrativeAnalysis] = None, errors: Optional[list] = None):
        self.result = result or NarrativeAnalysis(
            extracted_text="",
            summary="Complete blood count within normal ranges.",
            insights=[Insight(category="lab_result", text="Hemoglobin 13.5 g/dL")],
        )
        self.errors = list(errors or [])
        self.calls = 0

    async def analyze(self, data: bytes, mime_type: str) -> NarrativeAnalysis:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture(scope="function")
async def setup_database() -> AsyncGenerator[None, None]:
    """Create tables for one test and drop them afterwards."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(scope="function")
async def db_session(setup_database) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with TestSessionLocal() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
def storage_gateway() -> FakeStorageGateway:
    return FakeStorageGateway()


@pytest.fixture(scope="function")
async def async_client(setup_database, storage_gateway) -> AsyncGenerator:
    """Create an async test client with database and storage overrides."""
    from httpx import AsyncClient, ASGITransport
    from app.api.deps import get_storage_gateway
    from app.main import app

    async def override_get_db():
        async with TestSessionLocal() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage_gateway] = lambda: storage_gateway

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


async def register_user(client, phone_number: str = "+9779812345678", full_name: str = "Sita Sharma") -> dict:
    response = await client.post(
        "/api/auth/register",
        json={"phoneNumber": phone_number, "password": "secret123", "fullName": full_name},
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.fixture(scope="function")
async def registered_user(async_client) -> dict:
    """Registered user payload: {"user": {...}, "token": "..."}."""
    return await register_user(async_client)


@pytest.fixture(scope="function")
def auth_headers(registered_user) -> Dict[str, str]:
    return {"Authorization": f"Bearer {registered_user['token']}"}
