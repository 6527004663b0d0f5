"""
Pytest configuration and fixtures for the SCORM runtime tests
"""

import os
from pathlib import Path

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
)
from sqlalchemy.pool import NullPool

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_runtime.db"

from scorm_runtime.main import app as real_app  # noqa: E402
from scorm_runtime.db.config import get_session  # noqa: E402
from scorm_runtime.models.records import Base  # noqa: E402
from scorm_runtime.repositories.package_repo import PackageRepository  # noqa: E402
from scorm_runtime.services import content_proxy  # noqa: E402
from scorm_runtime.services.launches import (  # noqa: E402
    LaunchRegistry,
    get_launch_registry,
)

SCORM_12_MANIFEST = b"""<?xml version="1.0" encoding="UTF-8"?>
<manifest identifier="safety-101" version="1.0"
          xmlns="http://www.imsproject.org/xsd/imscp_rootv1p1p2"
          xmlns:adlcp="http://www.adlnet.org/xsd/adlcp_rootv1p2">
  <metadata>
    <schema>ADL SCORM</schema>
    <schemaversion>1.2</schemaversion>
  </metadata>
  <organizations default="org-1">
    <organization identifier="org-1">
      <title>Workplace Safety 101</title>
      <item identifier="item-1" identifierref="res-1">
        <title>Lesson 1</title>
      </item>
    </organization>
  </organizations>
  <resources>
    <resource identifier="res-1" type="webcontent" adlcp:scormtype="sco" href="index.html">
      <file href="index.html"/>
    </resource>
  </resources>
</manifest>
"""

SCORM_2004_MANIFEST = b"""<?xml version="1.0" encoding="UTF-8"?>
<manifest identifier="fire-drill" version="1"
          xmlns="http://www.imsglobal.org/xsd/imscp_v1p1"
          xmlns:adlcp="http://www.adlnet.org/xsd/adlcp_v1p3">
  <metadata>
    <schema>ADL SCORM</schema>
    <schemaversion>2004 4th Edition</schemaversion>
  </metadata>
  <organizations default="main">
    <organization identifier="other">
      <title>Unused Organization</title>
      <item identifier="x" identifierref="res-unused"/>
    </organization>
    <organization identifier="main">
      <title>Fire Drill</title>
      <item identifier="i-1" identifierref="res-main" parameters="?page=1">
        <title>Start</title>
      </item>
    </organization>
  </organizations>
  <resources>
    <resource identifier="res-unused" type="webcontent" href="unused.html"/>
    <resource identifier="res-main" type="webcontent" adlcp:scormType="sco" href="content/start.html"/>
  </resources>
</manifest>
"""

INDEX_HTML = (
    "<html><head><title>Lesson</title></head>"
    "<body><p>Hello learner</p></body></html>"
)


@pytest.fixture
async def session_factory(tmp_path: Path):
    """Isolated SQLite database per test"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'runtime.db'}",
        future=True,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    yield factory
    await engine.dispose()


@pytest.fixture
async def registry(session_factory):
    launches = LaunchRegistry(session_factory)
    yield launches
    await launches.close_all()


@pytest.fixture
def content_dir(tmp_path: Path, monkeypatch):
    """Content store with one extracted SCORM 1.2 package under ``pkg-12``"""
    root = tmp_path / "content"
    package = root / "pkg-12"
    package.mkdir(parents=True)
    (package / "imsmanifest.xml").write_bytes(SCORM_12_MANIFEST)
    (package / "index.html").write_text(INDEX_HTML, encoding="utf-8")
    (package / "app.js").write_text("console.log('sco');", encoding="utf-8")
    monkeypatch.setattr(content_proxy, "CONTENT_DIR", root)
    return root


@pytest.fixture
def make_package(session_factory):
    async def _make(
        title="Workplace Safety 101",
        content_root="pkg-12",
        version="1.2",
        entry_path="index.html",
    ):
        async with session_factory() as db:
            return await PackageRepository(db).create(
                title=title,
                content_root=content_root,
                version=version,
                entry_path=entry_path,
            )
    return _make


@pytest.fixture
async def test_app(session_factory, registry):
    async def override_session():
        async with session_factory() as session:
            yield session

    real_app.dependency_overrides[get_session] = override_session
    real_app.dependency_overrides[get_launch_registry] = lambda: registry
    yield real_app
    real_app.dependency_overrides.clear()


@pytest.fixture
async def client(test_app):
    transport = ASGITransport(app=test_app)
    async with AsyncClient(
        transport=transport, base_url="http://test"
    ) as ac:
        yield ac


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


# Helper functions for tests
def assert_response_success(response, expected_status=200):
    """Assert that response is successful"""
    assert response.status_code == expected_status, f"Expected {expected_status}, got {response.status_code}: {response.text}"


def assert_response_error(response, expected_status=400):
    """Assert that response is an error in the shared error envelope"""
    assert response.status_code == expected_status, f"Expected error {expected_status}, got {response.status_code}"
    body = response.json()
    assert body["success"] is False
    assert "error" in body
